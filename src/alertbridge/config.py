"""Application settings loaded from environment variables with AB_ prefix.

Nested sections use ``__`` as the delimiter, e.g.
``AB_ALERTING__RESEND_INTERVAL=1h``.  A YAML file may be supplied through
:func:`load_settings`; values from the file take precedence over the
environment.
"""

from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h|d)")
_BARE_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def parse_duration(value: Any) -> Any:
    """Accept Go-style strings such as ``"5m"``, ``"1h30m"`` or ``"500ms"``.

    Anything else (numbers of seconds, ``timedelta``, ISO-8601) is left for
    pydantic's own timedelta parsing.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if _BARE_NUMBER.fullmatch(text):
        return timedelta(seconds=float(text))
    if not text or not _DURATION_PART.match(text):
        return value
    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            return value
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        return value
    return timedelta(seconds=seconds)


Duration = Annotated[timedelta, BeforeValidator(parse_duration)]


def _positive(name: str, value: timedelta) -> timedelta:
    if value <= timedelta(0):
        raise ValueError(f"{name} must be positive")
    return value


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

class AlertingSettings(BaseModel):
    deduplication_window: Duration = timedelta(minutes=5)
    resend_interval: Duration = timedelta(minutes=30)
    silence_durations: list[Duration] = Field(
        default_factory=lambda: [
            timedelta(minutes=15),
            timedelta(hours=1),
            timedelta(hours=4),
            timedelta(hours=24),
        ]
    )
    default_silence_duration: Duration = timedelta(hours=1)

    @model_validator(mode="after")
    def _check_windows(self) -> AlertingSettings:
        _positive("deduplication_window", self.deduplication_window)
        _positive("resend_interval", self.resend_interval)
        _positive("default_silence_duration", self.default_silence_duration)
        for duration in self.silence_durations:
            _positive("silence duration", duration)
        if self.resend_interval <= self.deduplication_window:
            raise ValueError(
                f"resend_interval ({self.resend_interval}) must exceed "
                f"deduplication_window ({self.deduplication_window})"
            )
        return self


class RetrySettings(BaseModel):
    initial_delay: Duration = timedelta(milliseconds=100)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: Duration = timedelta(seconds=5)
    max_retries: int = Field(default=3, ge=0)
    jitter: float = Field(default=0.0, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_delays(self) -> RetrySettings:
        _positive("retry.initial_delay", self.initial_delay)
        _positive("retry.max_delay", self.max_delay)
        return self


class CircuitBreakerSettings(BaseModel):
    max_failures: int = Field(default=5, ge=1)
    timeout: Duration = timedelta(seconds=30)
    half_open_successes: int = Field(default=2, ge=1)

    @field_validator("timeout")
    @classmethod
    def _check_timeout(cls, v: timedelta) -> timedelta:
        return _positive("circuit_breaker.timeout", v)


class ReconnectSettings(BaseModel):
    initial_backoff: Duration = timedelta(milliseconds=500)
    max_backoff: Duration = timedelta(seconds=60)
    multiplier: float = Field(default=1.5, ge=1.0)
    max_failures: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def _check_backoff(self) -> ReconnectSettings:
        _positive("reconnect.initial_backoff", self.initial_backoff)
        _positive("reconnect.max_backoff", self.max_backoff)
        return self


class StorageSettings(BaseModel):
    type: Literal["memory", "sqlite", "postgres"] = "memory"
    sqlite_path: str = "alertbridge.db"
    postgres_url: str = ""
    pool_size: int = Field(default=5, ge=1)
    busy_timeout_ms: int = Field(default=5000, ge=0)
    create_tables: bool = True

    @model_validator(mode="after")
    def _check_backend(self) -> StorageSettings:
        if self.type == "postgres" and not self.postgres_url:
            raise ValueError("storage.postgres_url is required for postgres storage")
        return self


class SlackSettings(BaseModel):
    enabled: bool = False
    bot_token: str = ""
    channel_id: str = ""
    api_url: str = "https://slack.com/api"
    timeout_seconds: float = 10.0

    @model_validator(mode="after")
    def _check_credentials(self) -> SlackSettings:
        if self.enabled and not (self.bot_token and self.channel_id):
            raise ValueError(
                "slack.bot_token and slack.channel_id are required when slack is enabled"
            )
        return self


class PagerDutySettings(BaseModel):
    enabled: bool = False
    routing_key: str = ""
    events_url: str = "https://events.pagerduty.com"
    default_severity: Literal["critical", "error", "warning", "info"] = "warning"
    from_email: str = ""
    timeout_seconds: float = 10.0

    @model_validator(mode="after")
    def _check_credentials(self) -> PagerDutySettings:
        if self.enabled and not self.routing_key:
            raise ValueError("pagerduty.routing_key is required when pagerduty is enabled")
        return self


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Alert Bridge configuration.

    All values can be overridden via environment variables prefixed with
    ``AB_``.  For example, ``AB_STORAGE__TYPE=sqlite`` sets ``storage.type``.
    """

    alerting: AlertingSettings = Field(default_factory=AlertingSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    pagerduty: PagerDutySettings = Field(default_factory=PagerDutySettings)

    # Ordered; empty means every enabled destination in the order below.
    destinations: list[str] = Field(default_factory=list)

    environment: Literal["dev", "staging", "production"] = "dev"
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "AB_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def enabled_destinations(self) -> list[str]:
        enabled = []
        if self.slack.enabled:
            enabled.append("slack")
        if self.pagerduty.enabled:
            enabled.append("pagerduty")
        return enabled

    @model_validator(mode="after")
    def _resolve_destinations(self) -> Settings:
        enabled = self.enabled_destinations
        if not self.destinations:
            self.destinations = enabled
            return self
        for name in self.destinations:
            if name not in enabled:
                raise ValueError(f"destination {name!r} is not an enabled adapter")
        if len(set(self.destinations)) != len(self.destinations):
            raise ValueError("destinations must not repeat")
        return self


def load_settings(path: str | Path | None = None, **overrides: Any) -> Settings:
    """Build settings from the environment and an optional YAML file."""
    data: dict[str, Any] = {}
    if path is not None:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{path}: top level must be a mapping")
        data.update(loaded)
    data.update(overrides)
    return Settings(**data)
