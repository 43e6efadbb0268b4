"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("PANEL_ENV", "dev").lower()

# Scheduler (optional, enable on a single runner)
SCHEDULER_ENABLED = os.getenv("PANEL_SCHEDULER_ENABLED", "0") in {
    "1",
    "true",
    "yes",
    "True",
    "YES",
}


class Settings(BaseSettings):
    """Environment configuration for the proxy panel alerting backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///panel.db"
    ADMIN_API_TOKEN: str | None = None
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:5173"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOW_DB_CREATE_ALL: bool = True

    # --- Scheduler -------------------------------------------------------
    SCHEDULER_ENABLED: bool = SCHEDULER_ENABLED
    QUOTA_CHECK_INTERVAL_SECONDS: int = 60
    OFFLINE_CHECK_INTERVAL_SECONDS: int = 60
    HEARTBEAT_TIMEOUT_MINUTES: int = 3
    QUOTA_RESET_HOUR: int = 0
    ALERT_LOG_RETENTION_DAYS: int = 30
    ALERT_LOG_RETENTION_HOUR: int = 3

    # --- Alerting --------------------------------------------------------
    ALERT_DEDUP_WINDOW_HOURS: int = 24
    NOTIFY_TIMEOUT_SECONDS: float = 10.0
    NOTIFY_SUBJECT_PREFIX: str = "[Proxy Panel]"
    SEED_DEFAULT_RULES: bool = True

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("ADMIN_API_TOKEN", "SENTRY_DSN")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "proxy-panel-alerts"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "SCHEDULER_ENABLED",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
