"""Tests for the scheduler facade: submission, lookup, cancel, recovery."""
import json
from pathlib import Path
from urllib.parse import urlparse

import pytest

from compute_scheduler.jobs.backends.base import AdapterKind, BackendStatus, StatusReport
from compute_scheduler.jobs.backends.local import local_adapters
from compute_scheduler.jobs.backends.registry import AdapterRegistry
from compute_scheduler.jobs.errors import (
    AdmissionError,
    InvalidParamsError,
    JobNotFoundError,
    UnauthorizedSubmissionError,
    UnknownJobTypeError,
    UnknownTierError,
)
from compute_scheduler.jobs.models import JobStatus, JobType, JobView
from compute_scheduler.jobs.scheduler import JobScheduler


# ── Submission ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_submit_job_persists_estimates(scheduler):
    job_id = await scheduler.submit_job(
        "alice", "professional", "market_data_analysis", {"symbols": ["S"] * 10}
    )

    view = await scheduler.get_job(job_id)
    assert isinstance(view, JobView)
    assert view.status == JobStatus.queued
    assert view.priority == 5
    assert view.estimated_duration_minutes == 20
    assert view.retry_count == 0
    assert view.max_retries == 3
    assert view.progress == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "tier, job_type, params, error",
    [
        ("enterprise", "backtesting", {}, UnknownTierError),
        ("basic", "weather_forecasting", {}, UnknownJobTypeError),
        ("basic", "backtesting", ["not", "a", "dict"], InvalidParamsError),
        ("basic", "backtesting", {"when": object()}, InvalidParamsError),
    ],
)
async def test_submit_job_rejects_invalid(scheduler, tier, job_type, params, error):
    with pytest.raises(error):
        await scheduler.submit_job("alice", tier, job_type, params)
    assert await scheduler.store.list_jobs() == []


@pytest.mark.asyncio
async def test_submission_errors_share_base(scheduler):
    with pytest.raises(AdmissionError):
        await scheduler.submit_job("alice", "enterprise", "backtesting", {})


@pytest.mark.asyncio
async def test_unregistered_adapter_kind_rejected(store, tiers, settings, scripted):
    registry = AdapterRegistry([scripted(AdapterKind.batch)])
    sched = JobScheduler(store, tiers=tiers, registry=registry, settings=settings)

    with pytest.raises(UnknownJobTypeError):
        await sched.submit_job("alice", "basic", "financial_forecasting", {})
    assert await sched.submit_job("alice", "basic", "backtesting", {})


@pytest.mark.asyncio
async def test_authorizer_rejects_owner(store, tiers, registry, settings):
    def only_pros(owner_id, tier):
        return owner_id == "pro-user" or tier != "professional"

    sched = JobScheduler(store, tiers=tiers, registry=registry, settings=settings, authorizer=only_pros)

    with pytest.raises(UnauthorizedSubmissionError):
        await sched.submit_job("bob", "professional", "backtesting", {})
    with pytest.raises(UnauthorizedSubmissionError):
        await sched.submit_job("", "basic", "backtesting", {})
    assert await sched.submit_job("pro-user", "professional", "backtesting", {})
    assert await sched.submit_job("bob", "basic", "backtesting", {})


@pytest.mark.asyncio
async def test_get_missing_job(scheduler):
    with pytest.raises(JobNotFoundError):
        await scheduler.get_job("nope")


@pytest.mark.asyncio
async def test_list_jobs_by_status(scheduler):
    a = await scheduler.submit_job("alice", "basic", "backtesting", {})
    b = await scheduler.submit_job("alice", "basic", "backtesting", {})
    await scheduler.tick()

    assert [v.job_id for v in await scheduler.list_jobs()] == [b, a]
    assert [v.job_id for v in await scheduler.list_jobs(status="running")] == [a]
    assert [v.job_id for v in await scheduler.list_jobs(status="queued")] == [b]


@pytest.mark.asyncio
async def test_queue_status(scheduler):
    for _ in range(3):
        await scheduler.submit_job("alice", "professional", "backtesting", {})
    await scheduler.tick()

    status = await scheduler.queue_status()
    assert status["queued"] == 1
    assert status["tiers"]["professional"] == {"running": 2, "limit": 2}
    assert status["tiers"]["basic"] == {"running": 0, "limit": 1}
    assert status["active_pollers"] == 2


# ── Cancellation ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_queued_job(scheduler):
    job_id = await scheduler.submit_job("alice", "basic", "backtesting", {})

    assert await scheduler.cancel_job(job_id) is True

    view = await scheduler.get_job(job_id)
    assert view.status == JobStatus.cancelled
    assert await scheduler.tick() == []


@pytest.mark.asyncio
async def test_cancel_running_job(scheduler, adapters):
    job_id = await scheduler.submit_job("alice", "basic", "backtesting", {})
    await scheduler.tick()
    handle = (await scheduler.store.get_job(job_id)).external_handle

    assert await scheduler.cancel_job(job_id) is True

    view = await scheduler.get_job(job_id)
    assert view.status == JobStatus.cancelled
    assert adapters[AdapterKind.batch].cancelled == [handle]
    assert job_id not in scheduler.poller.active_job_ids()
    assert scheduler.admission.slots.count("basic") == 0


@pytest.mark.asyncio
async def test_cancel_frees_slot_for_next_job(scheduler):
    first = await scheduler.submit_job("alice", "basic", "backtesting", {})
    second = await scheduler.submit_job("alice", "basic", "backtesting", {})
    assert await scheduler.tick() == [first]

    await scheduler.cancel_job(first)

    assert await scheduler.tick() == [second]


@pytest.mark.asyncio
async def test_cancel_terminal_or_missing_job(scheduler):
    job_id = await scheduler.submit_job("alice", "basic", "backtesting", {})
    await scheduler.cancel_job(job_id)

    assert await scheduler.cancel_job(job_id) is False
    with pytest.raises(JobNotFoundError):
        await scheduler.cancel_job("nope")


# ── Recovery ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_recover_resumes_polling(store, tiers, registry, settings, adapters):
    first = JobScheduler(store, tiers=tiers, registry=registry, settings=settings)
    job_id = await first.submit_job("alice", "professional", "backtesting", {})
    await first.tick()
    await first.shutdown()

    second = JobScheduler(store, tiers=tiers, registry=registry, settings=settings)
    try:
        assert await second.recover() == 1
        assert second.admission.slots.count("professional") == 1
        assert second.poller.active_job_ids() == [job_id]

        job = await store.get_job(job_id)
        await second.poller.poll_once(job_id, job.external_handle, adapters[AdapterKind.batch])
        assert (await second.get_job(job_id)).status == JobStatus.completed
        assert second.admission.slots.count("professional") == 0
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_recover_retries_job_without_handle(scheduler):
    rec = await scheduler.store.create_job("alice", "basic", JobType.backtesting)
    await scheduler.store.claim_job(rec.job_id)

    assert await scheduler.recover() == 1

    job = await scheduler.store.get_job(rec.job_id)
    assert job.status == JobStatus.queued
    assert job.retry_count == 1
    assert job.error_message.startswith("Retry 1:")
    assert scheduler.admission.slots.count("basic") == 0


# ── End to end ───────────────────────────────────────────────────────


@pytest.fixture
def fast_settings(settings):
    return settings.model_copy(
        update={"admission_interval_seconds": 0.01, "poll_interval_seconds": 0.01}
    )


@pytest.mark.asyncio
async def test_local_backends_end_to_end(store, tiers, fast_settings, tmp_path):
    registry = AdapterRegistry(local_adapters(tmp_path / "results"))
    sched = JobScheduler(store, tiers=tiers, registry=registry, settings=fast_settings)
    submissions = [
        ("basic", "market_data_analysis", {"symbols": ["AAPL", "MSFT"]}),
        ("basic", "portfolio_optimization", {"portfolio_size": 3}),
        ("advanced", "financial_forecasting", {"period": "5y"}),
        ("professional", "backtesting", {"strategies": ["momentum"]}),
        ("professional", "sentiment_analysis", {"articles": ["a", "b"]}),
    ]
    job_ids = [await sched.submit_job("alice", *s) for s in submissions]

    await sched.start()
    try:
        await sched.wait_for_idle(timeout=10)
    finally:
        await sched.shutdown()

    for job_id, (_, _, params) in zip(job_ids, submissions):
        view = await sched.get_job(job_id)
        assert view.status == JobStatus.completed
        assert view.progress == 100
        assert len(view.result_uris) == 1
        path = Path(urlparse(view.result_uris[0]).path)
        with open(path) as f:
            payload = json.load(f)
        assert payload["job_id"] == job_id
        assert payload["params"] == params

    assert sched.admission.slots.snapshot() == {}
    assert sched.poller.active_job_ids() == []
    for kind in AdapterKind:
        assert registry.get(kind)._executions == {}


@pytest.mark.asyncio
async def test_background_loops_exhaust_retries(store, tiers, fast_settings, scripted):
    adapter = scripted(
        AdapterKind.batch,
        statuses=[StatusReport(status=BackendStatus.failed, error="exit code 137")],
    )
    sched = JobScheduler(store, tiers=tiers, registry=AdapterRegistry([adapter]), settings=fast_settings)
    job_id = await sched.submit_job("alice", "basic", "backtesting", {})

    await sched.start()
    try:
        await sched.wait_for_idle(timeout=10)
    finally:
        await sched.shutdown()

    view = await sched.get_job(job_id)
    assert view.status == JobStatus.failed
    assert view.retry_count == view.max_retries == 3
    assert view.error_message == "Failed after 3 attempts: exit code 137"
    assert len(adapter.submitted) == 3
    assert sched.poller.active_job_ids() == []
