"""Bounded retry policy for dispatch and execution failures."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .models import JobStatus
from .store import JobStore

logger = logging.getLogger(__name__)


class RetryHandler:
    """Recycles a failed ``running`` job to ``queued`` or fails it for good.

    Parameters
    ----------
    store : JobStore
    release : callable invoked with the job ID once the job has left the
        running state, freeing its tier slot.
    """

    def __init__(self, store: JobStore, release: Callable[[str], None]) -> None:
        self._store = store
        self._release = release

    async def handle_failure(self, job_id: str, cause: BaseException | str) -> Optional[JobStatus]:
        """Apply one failure event to *job_id*.

        Returns the status the job ended in, or ``None`` when the job was not
        running (already terminal, cancelled, or handled by someone else).
        """
        job = await self._store.get_job(job_id)
        if job is None or job.status != JobStatus.running:
            logger.info("Ignoring failure for job %s: not running", job_id)
            return None

        reason = str(cause) or type(cause).__name__
        retry_count = job.retry_count + 1

        if retry_count < job.max_retries:
            applied = await self._store.requeue_job(
                job_id, retry_count, f"Retry {retry_count}: {reason}"
            )
            outcome = JobStatus.queued
            if applied:
                logger.warning(
                    "Retrying job %s (attempt %d/%d): %s",
                    job_id, retry_count, job.max_retries, reason,
                )
        else:
            applied = await self._store.fail_job(
                job_id, retry_count, f"Failed after {retry_count} attempts: {reason}"
            )
            outcome = JobStatus.failed
            if applied:
                logger.error("Job %s failed permanently after %d attempts: %s", job_id, retry_count, reason)

        if not applied:
            logger.info("Job %s left the running state before its failure was recorded", job_id)
            return None
        self._release(job_id)
        return outcome
