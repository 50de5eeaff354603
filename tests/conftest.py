from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import pytest

from influxretry.shared.ledger import ResultsLedger
from influxretry.shared.retry import BackoffPolicy, RetryExecutor

Step = Union[BaseException, Sequence[Dict[str, Any]]]


class FakeStream:
    """Record stream that can fail part-way through iteration."""

    def __init__(self, records: Sequence[Dict[str, Any]], error: Optional[BaseException] = None) -> None:
        self._records = list(records)
        self._error = error
        self.close_count = 0

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        yield from self._records
        if self._error is not None:
            raise self._error

    def close(self) -> None:
        self.close_count += 1


class FakeClient:
    """Query client replaying a script of failures and results.

    Each entry is either an exception raised by ``query`` itself, a list of
    records, or a ``FakeStream``. The last entry repeats once the script
    runs out.
    """

    def __init__(self, *script: Union[Step, FakeStream]) -> None:
        self._script: List[Union[Step, FakeStream]] = list(script)
        self.calls: List[str] = []
        self.streams: List[FakeStream] = []
        self.closed = False

    def query(self, sql: str) -> FakeStream:
        self.calls.append(sql)
        step = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(step, BaseException):
            raise step
        stream = step if isinstance(step, FakeStream) else FakeStream(step)
        self.streams.append(stream)
        return stream

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def ledger() -> ResultsLedger:
    return ResultsLedger(capacity=50)


@pytest.fixture
def make_executor(sleeps: List[float], ledger: ResultsLedger):
    def factory(max_attempts: int = 10, **kwargs: Any) -> RetryExecutor:
        backoff = kwargs.pop(
            "backoff",
            BackoffPolicy(initial_interval=1.0, multiplier=2.0, max_interval=30.0),
        )
        kwargs.setdefault("observers", [ledger])
        kwargs.setdefault("sleep", sleeps.append)
        return RetryExecutor(backoff, max_attempts=max_attempts, **kwargs)

    return factory
