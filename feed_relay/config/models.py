"""Pydantic models describing the feed-relay runtime configuration."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


class ScheduleType(str, Enum):
    """Trigger modes for the periodic feed check."""

    CRON = "cron"
    INTERVAL = "interval"


class ScheduleConfig(BaseModel):
    """When the periodic feed check should run."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=600,
        description="Crontab expression, interval seconds or IntervalTrigger kwargs, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL:
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float, dict)):
                raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
            if isinstance(self.value, (int, float)) and self.value <= 0:
                raise ValueError("Interval seconds must be positive")
        return self


class HeaderProfile(BaseModel):
    """A named set of request headers presented to upstream feed servers."""

    name: str
    headers: dict[str, str] = Field(default_factory=dict)


def _default_header_profiles() -> list[HeaderProfile]:
    return [
        HeaderProfile(
            name="chrome-windows",
            headers={
                "User-Agent": (
                    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
                ),
                "Accept": FEED_ACCEPT,
                "Accept-Language": "en-US,en;q=0.9",
                "Cache-Control": "no-cache",
            },
        ),
        HeaderProfile(
            name="firefox-macos",
            headers={
                "User-Agent": (
                    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:125.0) "
                    "Gecko/20100101 Firefox/125.0"
                ),
                "Accept": FEED_ACCEPT,
                "Accept-Language": "en-US,en;q=0.7",
            },
        ),
        HeaderProfile(
            name="feed-reader",
            headers={
                "User-Agent": "FeedRelay/0.1 (RSS reader)",
                "Accept": "*/*",
            },
        ),
    ]


class FetchPolicy(BaseModel):
    """Retry, timeout and cooldown parameters of the feed fetcher."""

    max_attempts: int = 3
    timeout: float = 15.0
    backoff_base: float = 1.0
    backoff_jitter: float = 0.5
    rate_limit_base_ms: int = 300_000
    rate_limit_cap_ms: int = 3_600_000
    failure_step_ms: int = 120_000
    failure_cap_ms: int = 1_800_000
    header_profiles: list[HeaderProfile] = Field(default_factory=_default_header_profiles)

    @model_validator(mode="after")
    def _validate_policy(self) -> "FetchPolicy":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.backoff_base < 0 or self.backoff_jitter < 0:
            raise ValueError("backoff values must be non-negative")
        if self.rate_limit_cap_ms < self.rate_limit_base_ms:
            raise ValueError("rate_limit_cap_ms must be >= rate_limit_base_ms")
        if self.failure_cap_ms < self.failure_step_ms:
            raise ValueError("failure_cap_ms must be >= failure_step_ms")
        if not self.header_profiles:
            raise ValueError("at least one header profile is required")
        return self


class IngestionPolicy(BaseModel):
    """Batching, pacing and retention of the periodic feed check."""

    batch_size: int = 30
    owner_delay: float = 0.1
    item_delay: float = 0.2
    batch_pause: float = 1.5
    retention_days: int = 30
    max_items: int = 10
    description_limit: int = 200
    display_timezone: str = "UTC"
    failure_threshold: int = 3

    @field_validator("display_timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def _validate_policy(self) -> "IngestionPolicy":
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if min(self.owner_delay, self.item_delay, self.batch_pause) < 0:
            raise ValueError("delays must be non-negative")
        if self.retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        if self.max_items < 1:
            raise ValueError("max_items must be >= 1")
        return self


class MessagingConfig(BaseModel):
    """Telegram Bot API connection settings."""

    api_base: str = "https://api.telegram.org"
    bot_token: str = ""
    timeout: float = 10.0
    link_preview: bool = True
    poll_timeout: int = 30

    @field_validator("api_base")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class GlobalConfig(BaseModel):
    """Top-level settings shared by every component."""

    database_path: Path = Field(default=Path("data/feed_relay.db"))
    fetch: FetchPolicy = Field(default_factory=FetchPolicy)
    ingestion: IngestionPolicy = Field(default_factory=IngestionPolicy)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    messaging: MessagingConfig = Field(default_factory=MessagingConfig)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_database_path(self, base_dir: Path) -> Path:
        """Return the SQLite path, relative paths anchored at the project home."""

        if not self.database_path.is_absolute():
            return (base_dir / self.database_path).resolve()
        return self.database_path


__all__ = [
    "FetchPolicy",
    "GlobalConfig",
    "HeaderProfile",
    "IngestionPolicy",
    "MessagingConfig",
    "ScheduleConfig",
    "ScheduleType",
]
