"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator

from pulsewatch.core.exceptions import ConfigurationError
from pulsewatch.core.types import TargetConfiguration, WebhookSubscription

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class PulseConfig(BaseModel):
    """Probe scheduling configuration."""

    interval_secs: float = Field(default=60.0, gt=0)
    simultaneous_pulses: int = Field(default=5, ge=1)
    alert_threshold: int | None = Field(default=None, ge=1)
    shutdown_grace_secs: float = 30.0


class IngestionConfig(BaseModel):
    """Observation queue and drain loop configuration."""

    queue_size: int = Field(default=1000, ge=1)
    batch_size: int = Field(default=32, ge=1)
    retry_base_secs: float = 0.5
    retry_cap_secs: float = 30.0
    shutdown_drain_secs: float = 10.0


class RetentionConfig(BaseModel):
    """History compaction configuration."""

    cleaning_interval_secs: float = Field(default=780.0, gt=0)
    retention_secs: float = Field(default=86400.0, gt=0)


class WebhookConfig(BaseModel):
    """Outbound webhook delivery configuration."""

    queue_size: int = Field(default=500, ge=1)
    subscription_queue_size: int = Field(default=100, ge=1)
    max_attempts: int = Field(default=5, ge=1)
    backoff_base_secs: float = 1.0
    backoff_cap_secs: float = 60.0
    request_timeout_secs: float = 10.0
    block_when_full: bool = False


class QueryConfig(BaseModel):
    """History read configuration."""

    token_secret: SecretStr = SecretStr("")
    default_page_size: int = Field(default=10, ge=1)
    recent_minutes: int = Field(default=720, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    pulse: PulseConfig = PulseConfig()
    ingestion: IngestionConfig = IngestionConfig()
    retention: RetentionConfig = RetentionConfig()
    webhooks: WebhookConfig = WebhookConfig()
    query: QueryConfig = QueryConfig()
    logging: LoggingConfig = LoggingConfig()
    targets: list[TargetConfiguration] = Field(default_factory=list)
    subscriptions: list[WebhookSubscription] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> Settings:
        target_ids = [t.id for t in self.targets]
        if len(target_ids) != len(set(target_ids)):
            raise ValueError("target ids must be unique")
        subscription_ids = [s.id for s in self.subscriptions]
        if len(subscription_ids) != len(set(subscription_ids)):
            raise ValueError("subscription ids must be unique")
        return self


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.

    Raises:
        ConfigurationError: if the file contents fail validation.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    try:
        _settings = Settings(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings in {config_path}: {exc}") from exc
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
