"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``ESCALATION_`` prefix; infrastructure settings use
their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the escalation worker.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``ESCALATION_``; infra keys
    use their standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="ESCALATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── Redis ──────────────────────────────────────────────────────────
    # Empty string selects the in-memory store and rejection registry.
    redis_url: str = Field(default="", validation_alias="REDIS_URL")

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Escalation rules ───────────────────────────────────────────────
    rules_path: str | None = None  # JSON file overriding the default table
    auto_close_status: Literal["resolved", "rejected"] = "rejected"
    backdate_missed_windows: bool = False  # replay missed windows at their deadlines

    # ── Scheduler ──────────────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=60.0, gt=0)
    max_write_attempts: int = Field(default=3, ge=1)

    # ── Officer queue ──────────────────────────────────────────────────
    officer_rejection_ttl_seconds: int = Field(default=7_200, ge=1)  # 2 hours

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def uses_redis(self) -> bool:
        return bool(self.redis_url)


# Module-level singleton: import ``settings`` everywhere.
settings = Settings()
