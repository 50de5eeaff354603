from __future__ import annotations

from pathlib import Path

import pytest

from influxretry.infra.config import Settings, settings
from influxretry.shared.config import (
    INFLUX_CONFIG,
    LEDGER_CAPACITY,
    LOG_BUFFER_CAPACITY,
    LOG_DIRECTORY_PATH,
    LOG_FILE_PATH,
    LOG_LEVEL,
    LOGGING_CONFIG,
    RETRY_CONFIG,
    InfluxConfig,
    RetryConfig,
)
from influxretry.shared.retry import BackoffPolicy


def test_retry_config_converts_milliseconds() -> None:
    assert RETRY_CONFIG.initial_interval == settings.RETRY_INITIAL_INTERVAL_MS / 1000
    assert RETRY_CONFIG.max_interval == settings.RETRY_MAX_INTERVAL_MS / 1000
    assert RETRY_CONFIG.multiplier == settings.RETRY_MULTIPLIER
    assert RETRY_CONFIG.max_attempts == settings.RETRY_MAX_ATTEMPTS
    assert INFLUX_CONFIG.read_timeout == settings.INFLUXDB_READ_TIMEOUT_MS / 1000
    assert LEDGER_CAPACITY == settings.LEDGER_CAPACITY


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INFLUXRETRY_RETRY_INITIAL_INTERVAL_MS", "250")
    monkeypatch.setenv("INFLUXRETRY_RETRY_MAX_INTERVAL_MS", "4000")
    monkeypatch.setenv("INFLUXRETRY_RETRY_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("INFLUXRETRY_INFLUXDB_DATABASE", "metrics")

    custom = Settings(_env_file=None)
    retry = RetryConfig.from_settings(custom)

    assert retry == RetryConfig(initial_interval=0.25, multiplier=2.0, max_interval=4.0, max_attempts=3)
    assert InfluxConfig.from_settings(custom).database == "metrics"
    assert [retry.backoff_policy().next_delay(n) for n in range(6)] == [0.25, 0.5, 1.0, 2.0, 4.0, 4.0]


def test_settings_reject_multiplier_below_one(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INFLUXRETRY_RETRY_MULTIPLIER", "0.5")
    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_backoff_policy_validates_interval_order() -> None:
    config = RetryConfig(initial_interval=5.0, multiplier=2.0, max_interval=1.0, max_attempts=3)
    with pytest.raises(ValueError):
        config.backoff_policy()


def test_default_backoff_matches_settings() -> None:
    policy = RETRY_CONFIG.backoff_policy()
    assert isinstance(policy, BackoffPolicy)
    assert policy.next_delay(0) == RETRY_CONFIG.initial_interval


def test_logging_config_matches_settings() -> None:
    assert LOG_LEVEL == settings.LOG_LEVEL
    assert LOG_BUFFER_CAPACITY == settings.LOG_BUFFER_CAPACITY
    assert LOG_DIRECTORY_PATH == Path(settings.LOG_DIR)
    assert LOG_FILE_PATH == LOG_DIRECTORY_PATH / settings.LOG_FILENAME
    assert LOGGING_CONFIG.file_path == LOG_FILE_PATH
