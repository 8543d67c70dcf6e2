"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for EquipCare happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in. List fields (REMINDER_DAYS, LIFECYCLE_NOTIFY_ROLES) are read
      as JSON arrays.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used for the API_KEY policy: a configured
      key shorter than 32 characters is rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/, cmms/,
or engine/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import LifecycleThresholds

logger = logging.getLogger("equipcare.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'equipcare.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Trigger API
    # ------------------------------------------------------------------

    # Empty string means "not configured". In DEBUG mode the API accepts
    # unauthenticated trigger calls; in production every protected route
    # answers 401 until a key is set.
    api_key: str = ""

    # ------------------------------------------------------------------
    # Email transport (SMTP). Empty host disables email delivery; in-app
    # notifications are still recorded.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_starttls: bool = True
    smtp_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # Scheduling and escalation
    # ------------------------------------------------------------------

    reminder_days: list[int] = [7, 3, 1]
    # Roles used when seeding the default escalation chain (level 1 notifies
    # the first role, level 3 notifies all of them).
    escalation_default_roles: list[str] = ["biomed_engineer", "biomed_manager", "admin"]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    lifecycle_min_age_years: float = 5.0
    lifecycle_max_service_cost_ratio: float = 0.5
    lifecycle_min_downtime_hours: float = 100.0
    lifecycle_min_utilization_pct: float = 20.0
    lifecycle_replacement_threshold: float = 1.0
    lifecycle_notify_roles: list[str] = ["biomed_manager"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_api_key(self) -> "Settings":
        """Reject short trigger keys and warn when the API runs unprotected."""
        if self.api_key and len(self.api_key) < 32:
            raise ValueError("API_KEY must be at least 32 characters.")
        if not self.api_key and self.debug:
            logger.warning("WARNING: API_KEY not set. Trigger routes are open (DEBUG mode).")
        if any(d < 0 for d in self.reminder_days):
            raise ValueError("REMINDER_DAYS entries must be zero or positive.")
        return self

    def lifecycle_thresholds(self) -> LifecycleThresholds:
        return LifecycleThresholds(
            min_age_years=self.lifecycle_min_age_years,
            max_service_cost_ratio=self.lifecycle_max_service_cost_ratio,
            min_downtime_hours=self.lifecycle_min_downtime_hours,
            min_utilization_pct=self.lifecycle_min_utilization_pct,
            replacement_threshold=self.lifecycle_replacement_threshold,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
