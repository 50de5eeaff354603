"""Application configuration loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """Runtime configuration used across the project."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="INFLUXRETRY_", extra="ignore")
    INFLUXDB_URL: str = "http://localhost:8181"
    INFLUXDB_TOKEN: str | None = None
    INFLUXDB_DATABASE: str = "default"
    INFLUXDB_READ_TIMEOUT_MS: int = Field(default=90_000, gt=0)
    INFLUXDB_WRITE_TIMEOUT_MS: int = Field(default=90_000, gt=0)
    RETRY_INITIAL_INTERVAL_MS: int = Field(default=1_000, gt=0)
    RETRY_MULTIPLIER: float = Field(default=2.0, ge=1.0)
    RETRY_MAX_INTERVAL_MS: int = Field(default=30_000, gt=0)
    RETRY_MAX_ATTEMPTS: int = Field(default=10, ge=1)
    LEDGER_CAPACITY: int = Field(default=1_000, ge=1)
    LOG_BUFFER_CAPACITY: int = Field(default=500, ge=1)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    LOG_DIR: str = "logs"
    LOG_FILENAME: str = "influxretry.log"
    SHUTDOWN_MODE: Literal["graceful", "immediate"] = "graceful"

settings = Settings()
