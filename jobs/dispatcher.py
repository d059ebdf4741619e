"""Hands admitted jobs to their compute backend."""
from __future__ import annotations

import logging
from typing import Mapping, Optional

from ..config_structured import TierConfig
from .backends.base import BackendAdapter
from .backends.registry import AdapterRegistry
from .errors import DispatchError
from .models import JobRecord
from .poller import StatusPoller
from .retry import RetryHandler
from .store import JobStore

logger = logging.getLogger(__name__)


class Dispatcher:
    """Turns a ``running`` job into a backend submission plus a poller."""

    def __init__(
        self,
        store: JobStore,
        tiers: Mapping[str, TierConfig],
        registry: AdapterRegistry,
        poller: StatusPoller,
        retry: RetryHandler,
    ) -> None:
        self._store = store
        self._tiers = tiers
        self._registry = registry
        self._poller = poller
        self._retry = retry

    async def dispatch(self, job: JobRecord) -> Optional[str]:
        """Submit *job* and start polling it.

        Returns the external handle, or ``None`` when the dispatch failed
        and the job was handed to the retry handler.
        """
        tier = self._tiers.get(job.tier)
        if tier is None:
            await self._retry.handle_failure(
                job.job_id, DispatchError(f"No resource profile for tier {job.tier}")
            )
            return None

        adapter: Optional[BackendAdapter] = None
        handle: Optional[str] = None
        try:
            adapter = self._registry.adapter_for(job.job_type)
            handle = await adapter.submit(job.job_id, dict(job.params), tier.resources)
            attached = await self._store.attach_handle(job.job_id, handle, adapter.kind.value)
            if not attached:
                # Job left ``running`` (cancelled) or already holds a handle.
                logger.warning(
                    "Job %s refused handle %s; stopping the orphaned execution", job.job_id, handle
                )
                await self._stop_orphan(adapter, handle)
                return None
            self._poller.start(job.job_id, handle, adapter)
        except Exception as exc:
            err = DispatchError(f"{type(exc).__name__}: {exc}")
            logger.warning("Dispatch of job %s (%s) failed: %s", job.job_id, job.job_type.value, err)
            if adapter is not None and handle is not None:
                await self._stop_orphan(adapter, handle)
            await self._retry.handle_failure(job.job_id, err)
            return None

        logger.info(
            "Dispatched job %s to %s backend (handle=%s)", job.job_id, adapter.kind.value, handle
        )
        return handle

    @staticmethod
    async def _stop_orphan(adapter: BackendAdapter, handle: str) -> None:
        try:
            await adapter.cancel(handle)
        except Exception:
            logger.exception("Failed to stop orphaned execution %s", handle)
