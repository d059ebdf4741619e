"""Process-wide singletons for the CLI and embedding applications."""
from __future__ import annotations

from functools import lru_cache

from .config import SchedulerSettings


@lru_cache
def get_settings() -> SchedulerSettings:
    return SchedulerSettings()


# Lazy singletons — initialised at first call rather than import time
# so the event loop is already running when async resources are needed.

_job_store = None
_scheduler = None


def get_job_store():
    """Return the singleton ``JobStore``."""
    global _job_store
    if _job_store is None:
        from .store import JobStore

        _job_store = JobStore(get_settings().job_db_path)
    return _job_store


def get_scheduler():
    """Return the singleton ``JobScheduler`` (local backends, packaged tiers)."""
    global _scheduler
    if _scheduler is None:
        from .scheduler import JobScheduler

        _scheduler = JobScheduler(get_job_store(), settings=get_settings())
    return _scheduler


def reset_providers() -> None:
    """Forget cached singletons (tests and CLI re-configuration)."""
    global _job_store, _scheduler
    _job_store = None
    _scheduler = None
    get_settings.cache_clear()
