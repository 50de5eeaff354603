"""Centralized runtime configuration helpers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from pathlib import Path

from influxretry.infra.config import Settings, settings
from influxretry.shared.retry import BackoffPolicy


def _ms_to_seconds(value: int) -> float:
    return value / 1000.0


@dataclass(frozen=True)
class RetryConfig:
    """Expose the retry loop configuration in seconds."""

    initial_interval: float
    multiplier: float
    max_interval: float
    max_attempts: int

    def backoff_policy(self) -> BackoffPolicy:
        """Build the backoff policy; invalid values fail here, not mid-retry."""

        return BackoffPolicy(
            initial_interval=self.initial_interval,
            multiplier=self.multiplier,
            max_interval=self.max_interval,
        )

    @classmethod
    def from_settings(cls, source: Settings) -> "RetryConfig":
        return cls(
            initial_interval=_ms_to_seconds(source.RETRY_INITIAL_INTERVAL_MS),
            multiplier=source.RETRY_MULTIPLIER,
            max_interval=_ms_to_seconds(source.RETRY_MAX_INTERVAL_MS),
            max_attempts=source.RETRY_MAX_ATTEMPTS,
        )


@dataclass(frozen=True)
class InfluxConfig:
    """Connection parameters handed to the InfluxDB client."""

    host: str
    token: str | None
    database: str
    read_timeout: float
    write_timeout: float

    @classmethod
    def from_settings(cls, source: Settings) -> "InfluxConfig":
        return cls(
            host=source.INFLUXDB_URL,
            token=source.INFLUXDB_TOKEN,
            database=source.INFLUXDB_DATABASE,
            read_timeout=_ms_to_seconds(source.INFLUXDB_READ_TIMEOUT_MS),
            write_timeout=_ms_to_seconds(source.INFLUXDB_WRITE_TIMEOUT_MS),
        )


@dataclass(frozen=True)
class LoggingConfig:
    """Expose logging related configuration."""

    directory: str
    filename: str
    level: str
    buffer_capacity: int

    @cached_property
    def directory_path(self) -> Path:
        return Path(self.directory)

    @cached_property
    def file_path(self) -> Path:
        return self.directory_path / self.filename


retry_config = RetryConfig.from_settings(settings)
influx_config = InfluxConfig.from_settings(settings)

logging_config = LoggingConfig(
    directory=settings.LOG_DIR,
    filename=settings.LOG_FILENAME,
    level=settings.LOG_LEVEL,
    buffer_capacity=settings.LOG_BUFFER_CAPACITY,
)


RETRY_CONFIG = retry_config
INFLUX_CONFIG = influx_config
LEDGER_CAPACITY: int = settings.LEDGER_CAPACITY

LOGGING_CONFIG = logging_config
LOG_DIRECTORY_PATH: Path = logging_config.directory_path
LOG_FILE_PATH: Path = logging_config.file_path
LOG_LEVEL: str = logging_config.level
LOG_BUFFER_CAPACITY: int = logging_config.buffer_capacity
