from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from influxretry.shared.ledger import FAILURE, SUCCESS, AttemptRecord, LogEventBuffer, ResultsLedger


def _record(status: str, minute: int = 0) -> AttemptRecord:
    return AttemptRecord(
        description="SELECT 1",
        attempt=1,
        elapsed_ms=1.5,
        status=status,
        timestamp=datetime(2024, 1, 1, 12, minute, tzinfo=timezone.utc),
    )


def test_ledger_formats_timestamp_and_status() -> None:
    ledger = ResultsLedger()
    ledger.record(_record(SUCCESS))
    assert ledger.entries() == ["2024-01-01T12:00:00+00:00: success"]


def test_ledger_keeps_only_most_recent_entries() -> None:
    ledger = ResultsLedger(capacity=3)
    for minute in range(5):
        ledger.record(_record(FAILURE if minute % 2 else SUCCESS, minute))

    entries = ledger.entries()
    assert len(ledger) == 3
    assert ledger.capacity == 3
    assert entries[0].startswith("2024-01-01T12:02:00")
    assert entries[-1].startswith("2024-01-01T12:04:00")

    ledger.clear()
    assert ledger.entries() == []


def test_ledger_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        ResultsLedger(capacity=0)


def test_log_buffer_is_scoped_to_attach_and_detach() -> None:
    logger = logging.getLogger("influxretry.tests.buffer")
    logger.setLevel(logging.DEBUG)
    buffer = LogEventBuffer(capacity=2)

    logger.warning("before attach")
    buffer.attach(logger)
    logger.info("info message")
    logger.warning("first warning")
    logger.error("first error")
    buffer.detach(logger)
    logger.error("after detach")

    messages = [record.getMessage() for record in buffer.events()]
    assert messages == ["first warning", "first error"]


def test_log_buffer_filters_and_formats_above_level() -> None:
    logger = logging.getLogger("influxretry.tests.format")
    logger.setLevel(logging.DEBUG)
    buffer = LogEventBuffer(capacity=10)
    buffer.attach(logger)
    try:
        logger.info("quiet")
        logger.warning("retrying %s", "SELECT 1")
    finally:
        buffer.detach(logger)

    assert [r.getMessage() for r in buffer.events(logging.INFO)] == ["retrying SELECT 1"]
    text = buffer.format_events(logging.INFO)
    assert "[influxretry.tests.format]: WARNING retrying SELECT 1" in text
    assert "quiet" not in text

    buffer.clear()
    assert buffer.events() == []
