"""Per-job status polling bound to the job's running lifetime."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from .backends.base import BackendAdapter, BackendStatus, StatusReport
from .errors import ResultRetrievalWarning, TerminalExecutionFailure, TransientPollError
from .models import JobStatus
from .retry import RetryHandler
from .store import JobStore

logger = logging.getLogger(__name__)


class StatusPoller:
    """Owns one polling task per in-flight job.

    A task is started when a job is dispatched and ends when the job reaches
    a terminal state, is recycled to ``queued``, or is stopped explicitly.
    """

    def __init__(
        self,
        store: JobStore,
        retry: RetryHandler,
        release: Callable[[str], None],
        interval: float = 30.0,
        starting_progress: int = 10,
        in_progress_progress: int = 50,
    ) -> None:
        self._store = store
        self._retry = retry
        self._release = release
        self._interval = interval
        self._starting_progress = starting_progress
        self._in_progress_progress = in_progress_progress
        self._tasks: Dict[str, asyncio.Task] = {}

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self, job_id: str, handle: str, adapter: BackendAdapter) -> asyncio.Task:
        """Begin polling *handle* for *job_id*, replacing any earlier poller."""
        previous = self._tasks.get(job_id)
        if previous is not None and not previous.done():
            logger.warning("Replacing active poller for job %s", job_id)
            previous.cancel()
        task = asyncio.create_task(self._run(job_id, handle, adapter), name=f"poll-{job_id}")
        self._tasks[job_id] = task
        logger.info("Polling %s execution %s for job %s", adapter.kind.value, handle, job_id)
        return task

    async def stop(self, job_id: str) -> None:
        task = self._tasks.pop(job_id, None)
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def active_job_ids(self) -> List[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    # ── Loop ─────────────────────────────────────────────────────────

    async def _run(self, job_id: str, handle: str, adapter: BackendAdapter) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    if await self.poll_once(job_id, handle, adapter):
                        return
                except Exception:
                    logger.exception("Poll tick failed for job %s", job_id)
        finally:
            if self._tasks.get(job_id) is asyncio.current_task():
                self._tasks.pop(job_id, None)

    async def poll_once(self, job_id: str, handle: str, adapter: BackendAdapter) -> bool:
        """Run one poll tick. Returns True once polling should stop."""
        job = await self._store.get_job(job_id)
        if job is None or job.status != JobStatus.running or job.external_handle != handle:
            logger.info("Job %s no longer running on %s; stopping poller", job_id, handle)
            return True

        try:
            report = await adapter.poll_status(handle)
        except Exception as exc:
            err = TransientPollError(f"{type(exc).__name__}: {exc}")
            logger.warning("Error polling %s for job %s (will retry): %s", handle, job_id, err)
            return False

        if report.status == BackendStatus.completed:
            await self._complete(job_id, handle, adapter)
            return True

        if report.status == BackendStatus.failed:
            failure = TerminalExecutionFailure(report.error or "Backend reported failure")
            logger.warning("Execution %s for job %s failed: %s", handle, job_id, failure)
            await self._retry.handle_failure(job_id, failure)
            return True

        await self._store.update_progress(job_id, self._progress_for(report))
        return False

    def _progress_for(self, report: StatusReport) -> int:
        if report.progress > 0:
            return report.progress
        if report.status == BackendStatus.starting:
            return self._starting_progress
        return self._in_progress_progress

    async def _complete(self, job_id: str, handle: str, adapter: BackendAdapter) -> None:
        warning: Optional[ResultRetrievalWarning] = None
        try:
            uris = list(await adapter.fetch_results(handle))
        except Exception as exc:
            warning = ResultRetrievalWarning(
                f"Completed but failed to download results: {exc}"
            )
            logger.warning("Job %s: %s", job_id, warning)
            uris = []

        applied = await self._store.complete_job(
            job_id, uris, error_message=str(warning) if warning else None
        )
        if applied:
            logger.info("Job %s completed with %d result file(s)", job_id, len(uris))
            self._release(job_id)
