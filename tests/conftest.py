"""Shared test fixtures for the compute_scheduler test suite."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from compute_scheduler.config_structured import parse_tiers
from compute_scheduler.jobs.backends.base import (
    AdapterKind,
    BackendAdapter,
    BackendStatus,
    StatusReport,
)
from compute_scheduler.jobs.backends.registry import AdapterRegistry
from compute_scheduler.jobs.config import SchedulerSettings
from compute_scheduler.jobs.scheduler import JobScheduler
from compute_scheduler.jobs.store import JobStore

TEST_TIERS = {
    "tiers": {
        "basic": {
            "priority": 3,
            "max_concurrent_jobs": 1,
            "resources": {"training_instance_type": "ml.t3.medium", "batch_vcpus": 1,
                          "batch_memory_mb": 1024, "function_memory_mb": 256},
        },
        "advanced": {
            "priority": 4,
            "max_concurrent_jobs": 1,
            "resources": {"training_instance_type": "ml.m5.large", "batch_vcpus": 2,
                          "batch_memory_mb": 2048, "function_memory_mb": 512},
        },
        "professional": {
            "priority": 5,
            "max_concurrent_jobs": 2,
            "resources": {"training_instance_type": "ml.m5.xlarge", "batch_vcpus": 4,
                          "batch_memory_mb": 4096, "function_memory_mb": 1024},
        },
    }
}


def completed(progress: int = 100) -> StatusReport:
    return StatusReport(status=BackendStatus.completed, progress=progress)


class ScriptedAdapter(BackendAdapter):
    """Backend fake driven by a script of poll results.

    ``statuses`` is consumed one entry per poll; the last entry repeats.
    Entries that are exceptions are raised from ``poll_status``.
    """

    def __init__(
        self,
        kind: AdapterKind = AdapterKind.batch,
        *,
        statuses: Optional[List[Any]] = None,
        results: Optional[List[str]] = None,
        submit_error: Optional[Exception] = None,
        fetch_error: Optional[Exception] = None,
    ) -> None:
        self.kind = AdapterKind(kind)
        self.statuses = list(statuses or [completed()])
        self.results = list(results or [])
        self.submit_error = submit_error
        self.fetch_error = fetch_error
        self.submitted: List[tuple] = []
        self.polled: List[str] = []
        self.cancelled: List[str] = []
        self._seq = 0

    async def submit(self, job_id, params, profile) -> str:
        self.submitted.append((job_id, params, profile))
        if self.submit_error is not None:
            raise self.submit_error
        self._seq += 1
        return f"{self.kind.value}-{job_id}-{self._seq}"

    async def poll_status(self, handle: str) -> StatusReport:
        self.polled.append(handle)
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_results(self, handle: str) -> List[str]:
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.results)

    async def cancel(self, handle: str) -> None:
        self.cancelled.append(handle)


@pytest.fixture
def tiers():
    return parse_tiers(TEST_TIERS)


@pytest.fixture
async def store():
    s = JobStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def settings(tmp_path) -> SchedulerSettings:
    """Manual-drive settings: the poll interval is long enough that tests call
    ``poll_once`` themselves instead of waiting on the background task."""
    return SchedulerSettings(
        job_db_path=":memory:",
        results_dir=str(tmp_path / "results"),
        admission_interval_seconds=60.0,
        admission_attempts_per_tick=5,
        poll_interval_seconds=60.0,
        default_max_retries=3,
    )


@pytest.fixture
def adapters() -> Dict[AdapterKind, ScriptedAdapter]:
    return {kind: ScriptedAdapter(kind) for kind in AdapterKind}


@pytest.fixture
def registry(adapters) -> AdapterRegistry:
    return AdapterRegistry(adapters.values())


@pytest.fixture
async def scheduler(store, tiers, registry, settings):
    sched = JobScheduler(store, tiers=tiers, registry=registry, settings=settings)
    yield sched
    await sched.shutdown()


@pytest.fixture
def wait_until():
    """Poll an async predicate until it is truthy or the timeout expires."""

    async def _wait(predicate, timeout: float = 5.0, interval: float = 0.01):
        async def _loop():
            while True:
                value = await predicate()
                if value:
                    return value
                await asyncio.sleep(interval)

        return await asyncio.wait_for(_loop(), timeout)

    return _wait


@pytest.fixture
def scripted():
    """The ``ScriptedAdapter`` class, for tests that need a custom script."""
    return ScriptedAdapter
