"""Configuration management for the NGINX Plus monitor."""

from __future__ import annotations

import os
import re
from datetime import timedelta
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ConfigError(ValueError):
    """Configuration could not be loaded or is invalid. Fatal before the loop starts."""


_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h|d)")

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


def parse_duration(value: Any) -> timedelta:
    """
    Normalize a configured duration to a timedelta.

    Accepts a timedelta, a number of seconds, or a string: Go-style
    ("1440h", "1h30m", "90s", "-5m"), with an extra "d" unit for days ("30d"),
    or a bare number of seconds ("300").
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=float(value))
    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")

    s = value.strip()
    if not s:
        raise ValueError("Empty duration")

    sign = 1.0
    if s[0] in "+-":
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]

    if _DURATION_PART_RE.match(s) is None:
        try:
            return timedelta(seconds=sign * float(s))
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"Invalid duration: {value!r}") from exc

    pos = 0
    total = 0.0
    for m in _DURATION_PART_RE.finditer(s):
        if m.start() != pos:
            raise ValueError(f"Invalid duration: {value!r}")
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"Invalid duration: {value!r}")
    try:
        return timedelta(seconds=sign * total)
    except OverflowError as exc:
        raise ValueError(f"Invalid duration: {value!r}") from exc


class ThresholdConfig(BaseModel):
    """Warning windows for license expiry and usage-reporting grace."""

    model_config = ConfigDict(frozen=True)

    expiry_warning_window: timedelta = Field(
        default=timedelta(days=30), description="Warn when days until license expiry drop below this window"
    )
    grace_warning_window: timedelta = Field(
        default=timedelta(days=30), description="Warn when the reporting grace period is shorter than this window"
    )

    @field_validator("expiry_warning_window", "grace_warning_window", mode="before")
    @classmethod
    def _parse_window(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @field_validator("expiry_warning_window", "grace_warning_window")
    @classmethod
    def _non_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("warning windows must not be negative")
        return value


class TelegramSettings(BaseModel):
    """Optional Telegram alert delivery."""

    bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    chat_id: Optional[str] = Field(default=None, description="Telegram chat id to post alerts to")

    @property
    def enabled(self) -> bool:
        return bool((self.bot_token or "").strip() and (self.chat_id or "").strip())


class MonitorConfig(BaseModel):
    """Main configuration for one monitored NGINX Plus instance."""

    model_config = ConfigDict(frozen=True)

    target_address: str = Field(default="127.0.0.1:8080", description="host:port of the NGINX Plus API")
    api_version: int = Field(default=9, ge=1, description="NGINX Plus API version used in request paths")
    poll_interval: timedelta = Field(default=timedelta(seconds=60), description="Time between poll cycles")
    fetch_timeout: timedelta = Field(default=timedelta(seconds=10), description="Upper bound for one fetch attempt")
    retry_limit: int = Field(default=3, ge=1, description="Fetch attempts per cycle before reporting a failure")
    backoff_base: timedelta = Field(default=timedelta(seconds=1), description="First retry delay, doubled per attempt")
    backoff_cap: Optional[timedelta] = Field(default=None, description="Largest retry delay (defaults to poll_interval)")
    log_level: str = Field(default="INFO", description="Logging level")

    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)

    @field_validator("poll_interval", "fetch_timeout", "backoff_base", "backoff_cap", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        if value is None:
            return None
        return parse_duration(value)

    @field_validator("poll_interval", "fetch_timeout")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("must be a positive duration")
        return value

    @field_validator("backoff_base", "backoff_cap")
    @classmethod
    def _non_negative(cls, value: Optional[timedelta]) -> Optional[timedelta]:
        if value is not None and value < timedelta(0):
            raise ValueError("must not be negative")
        return value

    @field_validator("target_address")
    @classmethod
    def _host_port(cls, value: str) -> str:
        s = str(value or "").strip()
        host, sep, port = s.rpartition(":")
        if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"target_address must be host:port, got {value!r}")
        return s

    @property
    def base_url(self) -> str:
        return f"http://{self.target_address}/api/{self.api_version}"

    @property
    def effective_backoff_cap(self) -> timedelta:
        return self.backoff_cap if self.backoff_cap is not None else self.poll_interval


def build_config(data: dict[str, Any]) -> MonitorConfig:
    """Validate a raw mapping into a MonitorConfig, raising ConfigError on failure."""
    try:
        return MonitorConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid monitor configuration: {exc}") from exc


def load_config(config_path: Optional[str] = None) -> MonitorConfig:
    """Load configuration from a YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("NGINX_MONITOR_CONFIG", "config/monitor.yaml")

    config_data: dict[str, Any] = {}

    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Could not read config {config_path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError("Config YAML must be a mapping")
        config_data = dict(loaded)

    env_overrides = {
        "target_address": os.getenv("NGINX_MONITOR_TARGET"),
        "poll_interval": os.getenv("NGINX_MONITOR_POLL_INTERVAL"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    for key, value in env_overrides.items():
        if value is not None and value.strip():
            config_data[key] = value.strip()

    telegram = config_data.get("telegram") or {}
    if not isinstance(telegram, dict):
        raise ConfigError("telegram must be a mapping")
    telegram = dict(telegram)
    for key, env_name in (("bot_token", "TELEGRAM_BOT_TOKEN"), ("chat_id", "TELEGRAM_CHAT_ID")):
        value = os.getenv(env_name)
        if value is not None and value.strip():
            telegram[key] = value.strip()
    if telegram:
        config_data["telegram"] = telegram

    return build_config(config_data)
