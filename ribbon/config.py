"""
Configuration management for quota enforcement.

Provides centralized loading and validation of quota settings from
environment variables and .env files.
"""

import os
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

HOUR_SECONDS = 60 * 60
MINUTE_SECONDS = 60


class PersistenceFailurePolicy(str, Enum):
    """What a tracker does when the key/value store read or write fails."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class QuotaSettings(BaseModel):
    """
    Immutable quota configuration shared by both trackers.

    All durations are in seconds.
    """

    model_config = ConfigDict(frozen=True)

    free_daily_limit: int = Field(default=5, ge=0)
    premium_daily_limit: int = Field(default=50, ge=0)
    refinement_daily_limit: int = Field(default=25, ge=0)
    generation_window_seconds: float = Field(default=24 * HOUR_SECONDS, gt=0)

    max_attempts: int = Field(default=5, ge=1)
    lockout_duration_seconds: float = Field(default=15 * MINUTE_SECONDS, gt=0)
    max_lockout_multiplier: int = Field(default=4, ge=1)
    attempt_window_seconds: float = Field(default=HOUR_SECONDS, gt=0)

    generation_storage_key: str = "@ribbon/generation_limits"
    attempt_storage_key: str = "@ribbon/rate_limit_data"
    failure_policy: PersistenceFailurePolicy = PersistenceFailurePolicy.FAIL_OPEN
    sqlite_path: Optional[str] = None

    log_level: str = "INFO"
    log_json: bool = True


class ConfigLoader:
    """
    Load and validate quota configuration from multiple sources.

    Priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values

    Example:
        >>> loader = ConfigLoader()
        >>> settings = loader.load_quota_settings()
    """

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            env_file: Path to .env file (default: .env in working directory)
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.info(f"Loaded configuration from {env_path}")

    @staticmethod
    def _number(name: str, default: str, cast=int):
        raw = os.getenv(name, default)
        try:
            return cast(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {name}: {raw!r}", {"variable": name}
            ) from e

    def load_quota_settings(self) -> QuotaSettings:
        """
        Load quota settings from environment.

        Environment variables:
        - RIBBON_FREE_DAILY_LIMIT: Free tier generations per window (default: 5)
        - RIBBON_PREMIUM_DAILY_LIMIT: Premium generations per window (default: 50)
        - RIBBON_REFINEMENT_DAILY_LIMIT: Premium refinements per window (default: 25)
        - RIBBON_GENERATION_WINDOW_HOURS: Window length (default: 24)
        - RIBBON_MAX_ATTEMPTS: Failed sign-ins before lockout (default: 5)
        - RIBBON_LOCKOUT_MINUTES: Base lockout duration (default: 15)
        - RIBBON_MAX_LOCKOUT_MULTIPLIER: Backoff cap (default: 4)
        - RIBBON_ATTEMPT_WINDOW_MINUTES: Attempt tracking window (default: 60)
        - RIBBON_PERSISTENCE_FAILURE_POLICY: fail_open | fail_closed
        - RIBBON_SQLITE_PATH: Key/value database path (default: in-memory store)
        - RIBBON_LOG_LEVEL / RIBBON_LOG_JSON: Logging output

        Returns:
            QuotaSettings: Validated configuration instance

        Raises:
            ConfigurationError: If a value cannot be parsed or is out of range
        """
        try:
            settings = QuotaSettings(
                free_daily_limit=self._number("RIBBON_FREE_DAILY_LIMIT", "5"),
                premium_daily_limit=self._number("RIBBON_PREMIUM_DAILY_LIMIT", "50"),
                refinement_daily_limit=self._number("RIBBON_REFINEMENT_DAILY_LIMIT", "25"),
                generation_window_seconds=self._number(
                    "RIBBON_GENERATION_WINDOW_HOURS", "24", float
                ) * HOUR_SECONDS,
                max_attempts=self._number("RIBBON_MAX_ATTEMPTS", "5"),
                lockout_duration_seconds=self._number(
                    "RIBBON_LOCKOUT_MINUTES", "15", float
                ) * MINUTE_SECONDS,
                max_lockout_multiplier=self._number("RIBBON_MAX_LOCKOUT_MULTIPLIER", "4"),
                attempt_window_seconds=self._number(
                    "RIBBON_ATTEMPT_WINDOW_MINUTES", "60", float
                ) * MINUTE_SECONDS,
                failure_policy=os.getenv("RIBBON_PERSISTENCE_FAILURE_POLICY", "fail_open").lower(),
                sqlite_path=os.getenv("RIBBON_SQLITE_PATH") or None,
                log_level=os.getenv("RIBBON_LOG_LEVEL", "INFO"),
                log_json=os.getenv("RIBBON_LOG_JSON", "true").lower() == "true",
            )
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid quota settings", {"errors": e.errors(include_url=False)}
            ) from e

        logger.info(
            f"Loaded QuotaSettings: free={settings.free_daily_limit}, "
            f"premium={settings.premium_daily_limit}, "
            f"refinement={settings.refinement_daily_limit}, "
            f"policy={settings.failure_policy.value}"
        )
        return settings
