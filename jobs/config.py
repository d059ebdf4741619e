"""Process-level settings for the scheduler service."""
from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from ..config import (
    ADMISSION_ATTEMPTS_PER_TICK,
    ADMISSION_INTERVAL_SECONDS,
    DEFAULT_MAX_RETRIES,
    JOB_DB_PATH,
    LOG_FORMAT,
    LOG_LEVEL,
    POLL_INTERVAL_SECONDS,
    RESULTS_DIR,
)


class SchedulerSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file."""

    job_db_path: str = str(JOB_DB_PATH)
    tiers_path: Optional[str] = None
    results_dir: str = str(RESULTS_DIR)
    admission_interval_seconds: float = Field(ADMISSION_INTERVAL_SECONDS, gt=0)
    admission_attempts_per_tick: int = Field(ADMISSION_ATTEMPTS_PER_TICK, ge=1)
    poll_interval_seconds: float = Field(POLL_INTERVAL_SECONDS, gt=0)
    default_max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=1)
    log_level: str = LOG_LEVEL
    log_format: str = LOG_FORMAT

    model_config = {"env_prefix": "CS_", "env_file": ".env", "extra": "ignore"}
