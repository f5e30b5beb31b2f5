"""
Central configuration using Pydantic BaseSettings.

Validates env vars on first access (fail-fast). Poll timing is deliberately
absent here: readiness latency is a per-resource-kind property and lives in
config/poll_policies.yaml.

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.rollback.delete_retries)

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


# =============================================================================
# Nested Settings Groups
# =============================================================================


class PollerSettings(BaseSettings):
    """Readiness poller behaviour shared by all resource kinds."""

    model_config = {"env_prefix": "POLL_", "extra": "ignore"}

    # Consecutive failed status checks tolerated before a resource is
    # treated as failed (eventually-consistent "not found yet" responses)
    max_check_errors: int = 3

    @field_validator("max_check_errors")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("POLL_MAX_CHECK_ERRORS must be >= 0")
        return value


class RollbackSettings(BaseSettings):
    """Teardown retry policy for retryable deletion failures."""

    model_config = {"env_prefix": "ROLLBACK_", "extra": "ignore"}

    delete_retries: int = 5
    delete_retry_interval: float = 30.0

    @field_validator("delete_retries")
    @classmethod
    def _retries_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("ROLLBACK_DELETE_RETRIES must be >= 0")
        return value

    @field_validator("delete_retry_interval")
    @classmethod
    def _interval_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("ROLLBACK_DELETE_RETRY_INTERVAL must be >= 0")
        return value


# =============================================================================
# Root Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: str = ""

    # Per-kind readiness policies (defaults to config/poll_policies.yaml)
    poll_policy_file: Optional[Path] = None

    # Where the CLI writes JSON run reports (empty = do not write)
    report_dir: str = ""

    # Nested groups (initialized separately to support env_prefix)
    poller: PollerSettings = None  # type: ignore[assignment]
    rollback: RollbackSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("poller") is None:
            values["poller"] = PollerSettings()
        if values.get("rollback") is None:
            values["rollback"] = RollbackSettings()
        return values

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return value


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Get the application settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return AppSettings()
