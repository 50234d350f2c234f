"""Configuration models and YAML loader for the harvester."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

# Inter-URL delays below this floor are raised to it.
FETCH_DELAY_FLOOR = 2.0


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/harvester.db"


class BrowserConfig(BaseModel):
    """Browser session configuration (one browser per account)."""

    timeout_ms: int = Field(default=30000, ge=1000)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )
    viewport_width: int = Field(default=1366, ge=320)
    viewport_height: int = Field(default=768, ge=240)
    locale: str = "en-US"
    timezone_id: str = "America/New_York"


class SchedulerConfig(BaseModel):
    """Polling loop and pacing settings."""

    poll_interval_s: float = Field(default=5.0, gt=0.0)
    error_backoff_s: float = Field(default=10.0, gt=0.0)
    delay_min_s: float = Field(default=5.0, ge=0.0)
    delay_max_s: float = Field(default=15.0, ge=0.0)

    @model_validator(mode="after")
    def delay_window_ordered(self) -> "SchedulerConfig":
        if self.delay_max_s < self.delay_min_s:
            msg = "delay_max_s must be >= delay_min_s"
            raise ValueError(msg)
        return self


class AccountPoolConfig(BaseModel):
    """Account throttling: daily limits and failure cooldowns."""

    default_daily_limit: int = Field(default=100, ge=1)
    failure_threshold: int = Field(default=3, ge=1)
    base_cooldown_minutes: int = Field(default=30, ge=1)
    max_cooldown_minutes: int = Field(default=480, ge=1)

    @model_validator(mode="after")
    def cooldown_bounds(self) -> "AccountPoolConfig":
        if self.max_cooldown_minutes < self.base_cooldown_minutes:
            msg = "max_cooldown_minutes must be >= base_cooldown_minutes"
            raise ValueError(msg)
        return self


class EnrichmentConfig(BaseModel):
    """Follow-on job creation from cross-references found while parsing."""

    enabled: bool = True
    priority: int = 10
    max_depth: int = Field(default=1, ge=0)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    accounts: AccountPoolConfig = Field(default_factory=AccountPoolConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
