import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Persistence (in-memory store when unset)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Goals
    DEFAULT_DAILY_GOAL: int = 10_000

    # Streak rules
    REPAIR_WINDOW_DAYS: int = 7
    AT_RISK_HOUR: int = 18  # local hour after which an unmet day is "at risk"

    # Shields
    SHIELD_LOW_THRESHOLD: int = 1

    # Reconciliation
    RECONCILE_THROTTLE_HOURS: int = 6
    RECONCILE_LOOKBACK_DAYS: int = 365

    # Authoritative step history (optional remote source)
    STEP_SOURCE_URL: Optional[str] = None
    STEP_SOURCE_TOKEN: Optional[str] = None
    STEP_SOURCE_TIMEOUT_SECONDS: float = 10.0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate configuration values.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only the offending keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("streakkeeper")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    if cfg.DEFAULT_DAILY_GOAL <= 0:
        problems.append("DEFAULT_DAILY_GOAL must be positive")
    if cfg.REPAIR_WINDOW_DAYS < 1:
        problems.append("REPAIR_WINDOW_DAYS must be at least 1")
    if not 0 <= cfg.AT_RISK_HOUR <= 23:
        problems.append("AT_RISK_HOUR must be between 0 and 23")
    if cfg.RECONCILE_LOOKBACK_DAYS < 1:
        problems.append("RECONCILE_LOOKBACK_DAYS must be at least 1")
    if cfg.STEP_SOURCE_URL and not cfg.STEP_SOURCE_TOKEN:
        problems.append("STEP_SOURCE_TOKEN is missing for STEP_SOURCE_URL")

    if problems:
        message = f"Invalid configuration: {'; '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return not problems
