"""In-process backends for development, demos and end-to-end tests.

Each adapter runs a compute callable on a worker thread and writes its
return value to ``<results_dir>/<handle>/result.json``. The three kinds
differ only in how they name handles, which part of the resource profile
they honour, and whether an execution can be stopped.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from ...config import LOCAL_RESULT_FILENAME
from ...config_structured import ResourceProfile
from ..models import utc_now
from .base import AdapterKind, BackendAdapter, BackendStatus, StatusReport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
ComputeFn = Callable[..., Dict[str, Any]]


def summarize_job(
    job_id: str,
    params: Dict[str, Any],
    resources: Dict[str, Any],
    progress_callback: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    """Default compute: echo the request back as the result document."""
    if progress_callback:
        progress_callback(50)
    return {
        "job_id": job_id,
        "params": params,
        "resources": resources,
        "generated_at": utc_now(),
    }


@dataclass
class _Execution:
    task: Optional[asyncio.Task] = None
    started: bool = False
    progress: int = 0
    result_dir: Optional[Path] = None
    files: List[Path] = field(default_factory=list)


class LocalAdapter(BackendAdapter):
    """Runs ``compute`` in a thread via ``asyncio.to_thread``."""

    handle_prefix = "local"
    cancellable = True

    def __init__(
        self,
        results_dir: str | Path,
        compute: ComputeFn = summarize_job,
        start_delay: float = 0.0,
    ) -> None:
        self.results_dir = Path(results_dir)
        self._compute = compute
        self._start_delay = start_delay
        self._executions: Dict[str, _Execution] = {}
        # Cancelled executions still winding down.
        self._detached: Set[asyncio.Task] = set()

    # ── Adapter-specific hooks ───────────────────────────────────────

    def new_handle(self, job_id: str) -> str:
        return f"{self.handle_prefix}-{uuid.uuid4().hex}"

    def sizing(self, profile: ResourceProfile) -> Dict[str, Any]:
        return profile.to_dict()

    # ── BackendAdapter ───────────────────────────────────────────────

    async def submit(self, job_id: str, params: Dict[str, Any], profile: ResourceProfile) -> str:
        handle = self.new_handle(job_id)
        execution = _Execution(result_dir=self.results_dir / handle)
        self._executions[handle] = execution
        execution.task = asyncio.create_task(
            self._execute(execution, job_id, dict(params), self.sizing(profile))
        )
        logger.info("Local %s execution %s started for job %s", self.kind.value, handle, job_id)
        return handle

    async def _execute(
        self,
        execution: _Execution,
        job_id: str,
        params: Dict[str, Any],
        resources: Dict[str, Any],
    ) -> None:
        if self._start_delay > 0:
            await asyncio.sleep(self._start_delay)
        execution.started = True

        def progress_callback(pct: int) -> None:
            execution.progress = max(execution.progress, int(pct))

        payload = await asyncio.to_thread(
            self._compute, job_id, params, resources, progress_callback=progress_callback
        )
        path = await asyncio.to_thread(self._write_result, execution.result_dir, payload)
        execution.files.append(path)

    @staticmethod
    def _write_result(result_dir: Path, payload: Dict[str, Any]) -> Path:
        result_dir.mkdir(parents=True, exist_ok=True)
        path = result_dir / LOCAL_RESULT_FILENAME
        with open(path, "w") as f:
            json.dump(payload, f, indent=2, default=str)
        return path

    async def poll_status(self, handle: str) -> StatusReport:
        execution = self._executions.get(handle)
        if execution is None or execution.task is None:
            return StatusReport(status=BackendStatus.failed, error=f"Unknown execution {handle}")
        task = execution.task
        if not task.done():
            if not execution.started:
                return StatusReport(status=BackendStatus.starting)
            return StatusReport(status=BackendStatus.in_progress, progress=min(execution.progress, 99))
        if task.cancelled():
            self._executions.pop(handle, None)
            return StatusReport(status=BackendStatus.failed, error="Execution was stopped")
        exc = task.exception()
        if exc is not None:
            # Nothing left to fetch from a failed execution.
            self._executions.pop(handle, None)
            return StatusReport(status=BackendStatus.failed, error=str(exc) or type(exc).__name__)
        return StatusReport(status=BackendStatus.completed, progress=100)

    async def fetch_results(self, handle: str) -> List[str]:
        execution = self._executions.pop(handle, None)
        if execution is None:
            raise KeyError(f"Unknown execution {handle}")
        return [p.resolve().as_uri() for p in execution.files if p.exists()]

    async def cancel(self, handle: str) -> None:
        execution = self._executions.pop(handle, None)
        if execution is None or execution.task is None or execution.task.done():
            return
        task = execution.task
        self._detached.add(task)
        task.add_done_callback(self._reap)
        if not self.cancellable:
            logger.info("Local %s execution %s cannot be stopped", self.kind.value, handle)
            return
        task.cancel()

    def _reap(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Abandoned local execution failed: %s", task.exception())


class LocalTrainingAdapter(LocalAdapter):
    """Training-job style: one named instance per execution."""

    kind = AdapterKind.training
    handle_prefix = "training"

    def new_handle(self, job_id: str) -> str:
        return f"{self.handle_prefix}-{job_id[:8]}-{int(time.time() * 1000)}"

    def sizing(self, profile: ResourceProfile) -> Dict[str, Any]:
        return {"instance_type": profile.training_instance_type, "instance_count": 1}


class LocalBatchAdapter(LocalAdapter):
    """Batch-job style: vCPU/memory sized container."""

    kind = AdapterKind.batch
    handle_prefix = "batch"

    def sizing(self, profile: ResourceProfile) -> Dict[str, Any]:
        return {"vcpus": profile.batch_vcpus, "memory_mb": profile.batch_memory_mb}


class LocalFunctionAdapter(LocalAdapter):
    """Function-invocation style: fire-and-forget, cannot be stopped."""

    kind = AdapterKind.function
    handle_prefix = "function"
    cancellable = False

    def sizing(self, profile: ResourceProfile) -> Dict[str, Any]:
        return {"memory_mb": profile.function_memory_mb}


def local_adapters(
    results_dir: str | Path,
    compute: ComputeFn = summarize_job,
    start_delay: float = 0.0,
) -> List[LocalAdapter]:
    """One local adapter of every kind sharing a results directory."""
    return [
        cls(results_dir, compute=compute, start_delay=start_delay)
        for cls in (LocalTrainingAdapter, LocalBatchAdapter, LocalFunctionAdapter)
    ]
