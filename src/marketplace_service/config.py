"""
Configuration management for the marketplace service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

REDACTION_MARKER = "***"

_SENSITIVE_KEYS = frozenset({"admin_id"})


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str | None


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class PlatformConfig(BaseModel):
    """Platform operator configuration."""

    model_config = ConfigDict(extra="forbid")
    admin_id: str


class PayoutConfig(BaseModel):
    """Commission and fee configuration."""

    model_config = ConfigDict(extra="forbid")
    commission_rate: Decimal = Field(ge=0, le=1)
    default_service_fee: Decimal = Field(ge=0)


class OffersConfig(BaseModel):
    """Offer submission limits."""

    model_config = ConfigDict(extra="forbid")
    max_amount_multiplier: Decimal = Field(gt=0)


class EarningsConfig(BaseModel):
    """Earnings rollup scheduling configuration."""

    model_config = ConfigDict(extra="forbid")
    timezone: str
    scheduler_enabled: bool
    tick_seconds: int = Field(gt=0)


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    request: RequestConfig
    platform: PlatformConfig
    payout: PayoutConfig
    offers: OffersConfig
    earnings: EarningsConfig


def get_config_path() -> Path:
    """Determine configuration file path from CONFIG_PATH or the working directory."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


def load_settings(path: Path) -> Settings:
    """Load and validate settings from a YAML file."""
    if not path.is_file():
        msg = f"Configuration file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open(encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)

    if not isinstance(raw, dict):
        msg = f"Configuration file must contain a mapping: {path}"
        raise ValueError(msg)

    return Settings.model_validate(raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return load_settings(get_config_path())


def clear_settings_cache() -> None:
    """Forget cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER if key in _SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return _redact(get_settings().model_dump(mode="json"))
