"""Scheduler configuration using Pydantic Settings."""

import logging
from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"


class Settings(BaseSettings):
    """Settings for the scheduler process, read from INGEST_* variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="INGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    tick_interval_ms: int = Field(default=1000, gt=0)
    timezone: str = "UTC"
    database_url: str = "sqlite+aiosqlite:///ingest_scheduler.db"
    log_level: str = "INFO"

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def tick_interval(self) -> timedelta:
        return timedelta(milliseconds=self.tick_interval_ms)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
