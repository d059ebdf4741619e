"""Tests for the adapter registry and the local in-process backends."""
import asyncio
import json
import threading
from pathlib import Path
from urllib.parse import urlparse

import pytest

from compute_scheduler.config_structured import ResourceProfile
from compute_scheduler.jobs.backends.base import AdapterKind, BackendStatus
from compute_scheduler.jobs.backends.local import (
    LocalBatchAdapter,
    LocalFunctionAdapter,
    LocalTrainingAdapter,
    local_adapters,
)
from compute_scheduler.jobs.backends.registry import JOB_TYPE_ADAPTERS, AdapterRegistry
from compute_scheduler.jobs.errors import UnknownJobTypeError
from compute_scheduler.jobs.models import JobType

PROFILE = ResourceProfile(
    training_instance_type="ml.m5.large", batch_vcpus=2, batch_memory_mb=2048, function_memory_mb=512
)


async def _settle(adapter, handle, timeout=5.0):
    async def _loop():
        while True:
            report = await adapter.poll_status(handle)
            if report.status in (BackendStatus.completed, BackendStatus.failed):
                return report
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(_loop(), timeout)


# ── Registry ─────────────────────────────────────────────────────────


def test_every_job_type_has_an_adapter_kind():
    assert set(JOB_TYPE_ADAPTERS) == set(JobType)


def test_registry_resolves_kinds(tmp_path):
    registry = AdapterRegistry(local_adapters(tmp_path))
    assert registry.kind_for("market_data_analysis") == AdapterKind.training
    assert registry.kind_for("backtesting") == AdapterKind.batch
    assert registry.kind_for("automated_reporting") == AdapterKind.function
    assert isinstance(registry.adapter_for("risk_assessment"), LocalBatchAdapter)
    assert isinstance(registry.get("function"), LocalFunctionAdapter)


def test_registry_unknown_type_and_kind(tmp_path):
    registry = AdapterRegistry([LocalBatchAdapter(tmp_path)])
    with pytest.raises(UnknownJobTypeError):
        registry.kind_for("weather_forecasting")
    with pytest.raises(UnknownJobTypeError):
        registry.kind_for("anomaly_detection")
    assert registry.kind_for("backtesting") == AdapterKind.batch
    with pytest.raises(KeyError):
        registry.get("training")
    with pytest.raises(KeyError):
        registry.get("quantum")


def test_registry_custom_table(tmp_path):
    registry = AdapterRegistry(
        local_adapters(tmp_path), job_types={JobType.backtesting: AdapterKind.function}
    )
    assert registry.kind_for("backtesting") == AdapterKind.function
    with pytest.raises(UnknownJobTypeError):
        registry.kind_for("risk_assessment")


# ── Local adapters ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_local_execution_writes_result(tmp_path):
    adapter = LocalBatchAdapter(tmp_path)
    handle = await adapter.submit("job123456789", {"portfolio_size": 3}, PROFILE)
    assert handle.startswith("batch-")

    report = await _settle(adapter, handle)
    assert report.status == BackendStatus.completed
    assert report.progress == 100

    uris = await adapter.fetch_results(handle)
    assert len(uris) == 1
    with open(Path(urlparse(uris[0]).path)) as f:
        payload = json.load(f)
    assert payload["params"] == {"portfolio_size": 3}
    assert payload["resources"] == {"vcpus": 2, "memory_mb": 2048}

    assert adapter._executions == {}
    with pytest.raises(KeyError):
        await adapter.fetch_results(handle)


@pytest.mark.asyncio
async def test_sizing_per_kind(tmp_path):
    captured = {}

    def compute(job_id, params, resources, progress_callback=None):
        captured[job_id] = resources
        return {}

    for cls, job_id in ((LocalTrainingAdapter, "t"), (LocalFunctionAdapter, "f")):
        adapter = cls(tmp_path, compute=compute)
        handle = await adapter.submit(job_id, {}, PROFILE)
        await _settle(adapter, handle)

    assert captured["t"] == {"instance_type": "ml.m5.large", "instance_count": 1}
    assert captured["f"] == {"memory_mb": 512}


@pytest.mark.asyncio
async def test_training_handle_names_job(tmp_path):
    adapter = LocalTrainingAdapter(tmp_path)
    handle = await adapter.submit("abcdef0123456789", {}, PROFILE)
    assert handle.startswith("training-abcdef01-")
    await _settle(adapter, handle)


@pytest.mark.asyncio
async def test_compute_error_reports_failed(tmp_path):
    def compute(job_id, params, resources, progress_callback=None):
        raise ValueError("singular covariance matrix")

    adapter = LocalBatchAdapter(tmp_path, compute=compute)
    handle = await adapter.submit("j", {}, PROFILE)

    report = await _settle(adapter, handle)
    assert report.status == BackendStatus.failed
    assert report.error == "singular covariance matrix"
    assert handle not in adapter._executions
    with pytest.raises(KeyError):
        await adapter.fetch_results(handle)


@pytest.mark.asyncio
async def test_reports_starting_then_progress(tmp_path):
    release = threading.Event()

    def compute(job_id, params, resources, progress_callback=None):
        progress_callback(35)
        release.wait(5)
        return {"ok": True}

    adapter = LocalTrainingAdapter(tmp_path, compute=compute, start_delay=0.05)
    handle = await adapter.submit("j", {}, PROFILE)
    assert (await adapter.poll_status(handle)).status == BackendStatus.starting

    async def _in_progress():
        while True:
            report = await adapter.poll_status(handle)
            if report.status == BackendStatus.in_progress and report.progress == 35:
                return report
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_in_progress(), 5)
    release.set()
    assert (await _settle(adapter, handle)).status == BackendStatus.completed


@pytest.mark.asyncio
async def test_unknown_handle(tmp_path):
    adapter = LocalBatchAdapter(tmp_path)
    report = await adapter.poll_status("batch-missing")
    assert report.status == BackendStatus.failed
    with pytest.raises(KeyError):
        await adapter.fetch_results("batch-missing")


@pytest.mark.asyncio
async def test_cancel_stops_batch_but_not_function(tmp_path):
    batch = LocalBatchAdapter(tmp_path, start_delay=10)
    handle = await batch.submit("j", {}, PROFILE)
    task = batch._executions[handle].task
    await batch.cancel(handle)
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0)
    assert batch._executions == {}
    assert batch._detached == set()
    assert (await batch.poll_status(handle)).error == f"Unknown execution {handle}"

    function = LocalFunctionAdapter(tmp_path, start_delay=0.05)
    handle = await function.submit("j", {}, PROFILE)
    task = function._executions[handle].task
    await function.cancel(handle)
    assert handle not in function._executions
    assert task in function._detached
    await asyncio.wait_for(task, 5)
    await asyncio.sleep(0)
    assert not task.cancelled()
    assert function._detached == set()


@pytest.mark.asyncio
async def test_stopped_execution_reported_once(tmp_path):
    batch = LocalBatchAdapter(tmp_path, start_delay=10)
    handle = await batch.submit("j", {}, PROFILE)
    batch._executions[handle].task.cancel()

    report = await _settle(batch, handle)
    assert report.error == "Execution was stopped"
    assert handle not in batch._executions
