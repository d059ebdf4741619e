"""Admission control: starts queued jobs under per-tier concurrency limits."""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING, AbstractSet, Dict, List, Mapping, Optional, Set

from ..config_structured import TierConfig
from .models import JobRecord
from .store import JobStore

if TYPE_CHECKING:
    from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class TierSlots:
    """In-memory set of running jobs, grouped by tier.

    Only the admission controller acquires slots. Release is synchronous so
    it can be called from the poller and retry handler without awaiting.
    """

    def __init__(self) -> None:
        self._holders: Dict[str, str] = {}
        self._counts: Counter = Counter()

    def count(self, tier: str) -> int:
        return self._counts[tier]

    def acquire(self, job_id: str, tier: str) -> bool:
        if job_id in self._holders:
            return False
        self._holders[job_id] = tier
        self._counts[tier] += 1
        return True

    def release(self, job_id: str) -> Optional[str]:
        """Free the slot held by *job_id*; returns its tier, or None if unheld."""
        tier = self._holders.pop(job_id, None)
        if tier is not None:
            self._counts[tier] -= 1
            if self._counts[tier] <= 0:
                del self._counts[tier]
        return tier

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counts)


class AdmissionController:
    """Recurring scheduling loop over the queued jobs.

    Each tick makes up to ``attempts_per_tick`` attempts; one attempt admits
    at most one job, picking the oldest queued job whose tier has spare
    capacity. The capacity check, the store claim and the slot acquire run
    under one lock so concurrent attempts cannot overshoot a tier limit.
    """

    def __init__(
        self,
        store: JobStore,
        tiers: Mapping[str, TierConfig],
        dispatcher: Optional["Dispatcher"] = None,
        attempts_per_tick: int = 5,
    ) -> None:
        self._store = store
        self._tiers = tiers
        self._dispatcher = dispatcher
        self._attempts = attempts_per_tick
        self.slots = TierSlots()
        self._admit_lock = asyncio.Lock()
        self._tick_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._warned_tiers: Set[str] = set()

    def bind_dispatcher(self, dispatcher: "Dispatcher") -> None:
        self._dispatcher = dispatcher

    # ── Slots ────────────────────────────────────────────────────────

    def release(self, job_id: str) -> None:
        tier = self.slots.release(job_id)
        if tier is not None:
            logger.debug("Released %s slot held by job %s", tier, job_id)

    def adopt(self, job: JobRecord) -> bool:
        """Re-acquire the slot of a job already ``running`` in the store."""
        return self.slots.acquire(job.job_id, job.tier)

    # ── Admission ────────────────────────────────────────────────────

    async def admit_one(self, exclude: AbstractSet[str] = frozenset()) -> Optional[JobRecord]:
        """Move at most one queued job to ``running``; returns it, or None."""
        async with self._admit_lock:
            for job in await self._store.list_queued():
                if job.job_id in exclude:
                    continue
                cfg = self._tiers.get(job.tier)
                if cfg is None:
                    if job.tier not in self._warned_tiers:
                        self._warned_tiers.add(job.tier)
                        logger.warning("Queued job %s has unconfigured tier %r; skipping", job.job_id, job.tier)
                    continue
                if self.slots.count(job.tier) >= cfg.max_concurrent_jobs:
                    continue
                if not await self._store.claim_job(job.job_id):
                    continue
                self.slots.acquire(job.job_id, job.tier)
                logger.info(
                    "Admitted job %s (tier=%s, %d/%d running)",
                    job.job_id, job.tier, self.slots.count(job.tier), cfg.max_concurrent_jobs,
                )
                return await self._store.get_job(job.job_id) or job
        return None

    async def tick(self) -> List[str]:
        """Run one admission tick and return the IDs of admitted jobs."""
        if self._dispatcher is None:
            raise RuntimeError("AdmissionController has no dispatcher bound")
        async with self._tick_lock:
            admitted: List[str] = []
            attempted: Set[str] = set()
            for _ in range(self._attempts):
                job = await self.admit_one(exclude=attempted)
                if job is None:
                    break
                attempted.add(job.job_id)
                admitted.append(job.job_id)
                try:
                    await self._dispatcher.dispatch(job)
                except Exception:
                    logger.exception("Dispatch of admitted job %s raised", job.job_id)
            return admitted

    # ── Loop ─────────────────────────────────────────────────────────

    def start(self, interval: float) -> asyncio.Task:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run(interval), name="admission-loop")
        return self._loop_task

    async def stop(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, interval: float) -> None:
        logger.info("Admission loop started (interval=%.1fs)", interval)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Admission tick failed")
            await asyncio.sleep(interval)
