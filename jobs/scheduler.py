"""Job scheduler facade: submission, lookup, cancellation and lifecycle."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config import IN_PROGRESS_PROGRESS, STARTING_PROGRESS
from ..config_structured import TierConfig, load_tiers
from .admission import AdmissionController
from .backends.local import local_adapters
from .backends.registry import AdapterRegistry
from .config import SchedulerSettings
from .dispatcher import Dispatcher
from .errors import (
    ConfigValidationError,
    DispatchError,
    InvalidParamsError,
    JobNotFoundError,
    UnauthorizedSubmissionError,
    UnknownJobTypeError,
    UnknownTierError,
)
from .estimator import estimate
from .models import JobStatus, JobType, JobView
from .poller import StatusPoller
from .retry import RetryHandler
from .store import JobStore

logger = logging.getLogger(__name__)

Authorizer = Callable[[str, str], bool]


def load_tier_table(path: Optional[str | Path] = None) -> Mapping[str, TierConfig]:
    """Load the tier YAML, converting parse problems to ``ConfigValidationError``."""
    try:
        return load_tiers(Path(path) if path else None)
    except (OSError, ValueError, TypeError) as e:
        raise ConfigValidationError(f"Invalid tier configuration ({path or 'default'}): {e}") from e


def log_config_issues() -> None:
    try:
        from ..config import validate_config

        issues = validate_config()
        for issue in issues:
            level = issue.get("level", "WARNING")
            msg = issue.get("message", "")
            if level == "ERROR":
                logger.error("Config validation: %s", msg)
            else:
                logger.warning("Config validation: %s", msg)
        if not issues:
            logger.info("Config validation: all checks passed")
    except Exception as e:
        logger.warning("Config validation could not run: %s", e)


class JobScheduler:
    """Tiered background job scheduler.

    Wires the admission controller, dispatcher, status poller and retry
    handler around one ``JobStore``. ``submit_job`` only persists a queued
    job; everything after that happens on the background loops started by
    ``start()``.

    Parameters
    ----------
    store : JobStore
    tiers : tier table; loaded from ``settings.tiers_path`` when omitted.
    registry : adapter registry; local in-process adapters when omitted.
    settings : process-level knobs (intervals, retries, paths).
    authorizer : optional ``(owner_id, tier) -> bool`` submission check.
    """

    def __init__(
        self,
        store: JobStore,
        tiers: Optional[Mapping[str, TierConfig]] = None,
        registry: Optional[AdapterRegistry] = None,
        settings: Optional[SchedulerSettings] = None,
        authorizer: Optional[Authorizer] = None,
    ) -> None:
        self.settings = settings or SchedulerSettings()
        self.store = store
        self.tiers = tiers if tiers is not None else load_tier_table(self.settings.tiers_path)
        self.registry = registry or AdapterRegistry(local_adapters(self.settings.results_dir))
        self._authorizer = authorizer

        self.admission = AdmissionController(
            store, self.tiers, attempts_per_tick=self.settings.admission_attempts_per_tick
        )
        self.retry = RetryHandler(store, self.admission.release)
        self.poller = StatusPoller(
            store,
            self.retry,
            self.admission.release,
            interval=self.settings.poll_interval_seconds,
            starting_progress=STARTING_PROGRESS,
            in_progress_progress=IN_PROGRESS_PROGRESS,
        )
        self.dispatcher = Dispatcher(store, self.tiers, self.registry, self.poller, self.retry)
        self.admission.bind_dispatcher(self.dispatcher)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Initialise the store, re-adopt running jobs and start admitting."""
        await self.store.initialize()
        recovered = await self.recover()
        if recovered:
            logger.info("Recovered %d running job(s) from the store", recovered)
        self.admission.start(self.settings.admission_interval_seconds)

    async def shutdown(self, close_store: bool = False) -> None:
        """Stop the admission loop and every poller. Jobs stay ``running``."""
        await self.admission.stop()
        await self.poller.shutdown()
        if close_store:
            await self.store.close()
        logger.info("Scheduler stopped")

    async def recover(self) -> int:
        """Re-adopt jobs left ``running`` by a previous process."""
        jobs = await self.store.list_running()
        for job in jobs:
            self.admission.adopt(job)
            if job.external_handle and job.adapter_kind:
                try:
                    adapter = self.registry.get(job.adapter_kind)
                except KeyError:
                    await self.retry.handle_failure(
                        job.job_id,
                        DispatchError(f"No {job.adapter_kind} adapter registered after restart"),
                    )
                    continue
                self.poller.start(job.job_id, job.external_handle, adapter)
            else:
                await self.retry.handle_failure(
                    job.job_id, DispatchError("Interrupted before dispatch completed")
                )
        return len(jobs)

    # ── Submission & lookup ──────────────────────────────────────────

    async def submit_job(
        self,
        owner_id: str,
        tier: str,
        job_type: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Validate and enqueue a job; returns its ID without waiting.

        Raises
        ------
        UnknownTierError, UnknownJobTypeError, InvalidParamsError,
        UnauthorizedSubmissionError
            The submission was rejected and no job was created.
        """
        if tier not in self.tiers:
            available = ", ".join(sorted(self.tiers))
            raise UnknownTierError(f"Unknown tier: {tier}. Available: {available}")

        try:
            kind = JobType(job_type)
        except ValueError as e:
            raise UnknownJobTypeError(f"Unknown job type: {job_type}") from e
        self.registry.kind_for(kind)

        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise InvalidParamsError(f"params must be a mapping, got {type(params).__name__}")
        try:
            json.dumps(params)
        except (TypeError, ValueError) as e:
            raise InvalidParamsError(f"params must be JSON-serialisable: {e}") from e

        if not owner_id:
            raise UnauthorizedSubmissionError("owner_id is required")
        if self._authorizer is not None and not self._authorizer(owner_id, tier):
            raise UnauthorizedSubmissionError(f"{owner_id} may not submit {tier} jobs")

        est = estimate(kind, params, tier, self.tiers)
        rec = await self.store.create_job(
            owner_id,
            tier,
            kind,
            params,
            priority=est.priority,
            estimated_duration_minutes=est.estimated_duration_minutes,
            max_retries=self.settings.default_max_retries,
        )
        logger.info(
            "Queued job %s (%s, tier=%s, ~%d min)",
            rec.job_id, kind.value, tier, est.estimated_duration_minutes,
        )
        return rec.job_id

    async def get_job(self, job_id: str) -> JobView:
        rec = await self.store.get_job(job_id)
        if rec is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return JobView.from_record(rec)

    async def list_jobs(self, status: Optional[str] = None, limit: int = 50) -> List[JobView]:
        recs = await self.store.list_jobs(limit=limit, status=JobStatus(status) if status else None)
        return [JobView.from_record(r) for r in recs]

    # ── Cancellation ─────────────────────────────────────────────────

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a queued or running job.

        Returns False when the job was already terminal.
        """
        rec = await self.store.get_job(job_id)
        if rec is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if rec.is_terminal:
            return False

        if rec.status == JobStatus.queued:
            if await self.store.cancel_job(job_id, JobStatus.queued):
                logger.info("Cancelled queued job %s", job_id)
                return True
            # Admitted between the read and the update.
            rec = await self.store.get_job(job_id)
            if rec is None or rec.status != JobStatus.running:
                return False

        await self.poller.stop(job_id)
        if not await self.store.cancel_job(job_id, JobStatus.running):
            return False
        self.admission.release(job_id)
        if rec.external_handle and rec.adapter_kind:
            try:
                await self.registry.get(rec.adapter_kind).cancel(rec.external_handle)
            except Exception:
                logger.exception("Failed to stop execution %s for job %s", rec.external_handle, job_id)
        logger.info("Cancelled running job %s", job_id)
        return True

    # ── Observability ────────────────────────────────────────────────

    async def tick(self) -> List[str]:
        """Run one admission tick immediately."""
        return await self.admission.tick()

    async def queue_status(self) -> Dict[str, Any]:
        counts = await self.store.count_by_status()
        running = self.admission.slots.snapshot()
        return {
            "queued": counts.get(JobStatus.queued.value, 0),
            "by_status": counts,
            "tiers": {
                name: {"running": running.get(name, 0), "limit": cfg.max_concurrent_jobs}
                for name, cfg in self.tiers.items()
            },
            "active_pollers": len(self.poller.active_job_ids()),
        }

    async def wait_for_idle(self, timeout: Optional[float] = None, interval: float = 0.05) -> None:
        """Block until no job is queued or running."""

        async def _idle() -> None:
            while True:
                counts = await self.store.count_by_status()
                if not counts.get(JobStatus.queued.value) and not counts.get(JobStatus.running.value):
                    return
                await asyncio.sleep(interval)

        await asyncio.wait_for(_idle(), timeout)
