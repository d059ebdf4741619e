#!/usr/bin/env python3
"""
Run the compute scheduler against the local in-process backends.

Usage:
    python3 run_scheduler.py --demo 6                # Submit 6 demo jobs, run until idle
    python3 run_scheduler.py --demo 6 --fast         # Same, with sub-second ticks
    python3 run_scheduler.py --status JOB_ID         # Show one job
    python3 run_scheduler.py --list                  # Recent jobs and queue status
    python3 run_scheduler.py --tiers my_tiers.yaml   # Custom tier table
"""
import argparse
import asyncio
import itertools
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from compute_scheduler.config import LOG_FORMAT, LOG_LEVEL
from compute_scheduler.jobs.config import SchedulerSettings
from compute_scheduler.jobs.errors import JobNotFoundError, SchedulerError
from compute_scheduler.jobs.models import JobType
from compute_scheduler.jobs.scheduler import JobScheduler, log_config_issues
from compute_scheduler.jobs.store import JobStore
from compute_scheduler.utils.logging import configure_logging

logger = logging.getLogger("compute_scheduler.cli")

DEMO_PARAMS = {
    JobType.market_data_analysis: {"symbols": ["AAPL", "MSFT", "NVDA"]},
    JobType.portfolio_optimization: {"portfolio_size": 4},
    JobType.risk_assessment: {"complexity": "advanced"},
    JobType.financial_forecasting: {"period": "1y"},
    JobType.batch_data_processing: {"data_size": 5000},
    JobType.automated_reporting: {"report_type": "summary"},
    JobType.anomaly_detection: {"data_points": 25000},
    JobType.sentiment_analysis: {"articles": ["a1", "a2", "a3", "a4"]},
    JobType.correlation_analysis: {"assets": ["SPY", "QQQ", "IWM", "TLT"]},
    JobType.backtesting: {"strategies": ["momentum", "mean_reversion"]},
}


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _run_demo(scheduler: JobScheduler, count: int, timeout: float) -> int:
    tiers = itertools.cycle(sorted(scheduler.tiers))
    job_types = itertools.cycle(DEMO_PARAMS.items())
    job_ids = []
    for i in range(count):
        job_type, params = next(job_types)
        job_id = await scheduler.submit_job(f"demo-user-{i % 3}", next(tiers), job_type.value, params)
        job_ids.append(job_id)
    print(f"Submitted {len(job_ids)} demo job(s)")

    await scheduler.start()
    try:
        await scheduler.wait_for_idle(timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("Demo did not finish within %.0fs", timeout)
        return 1
    finally:
        await scheduler.shutdown()

    print(f"\n  {'JOB':<14}{'TIER':<14}{'TYPE':<26}{'STATUS':<11}{'RETRIES':>8}")
    for job_id in job_ids:
        view = await scheduler.get_job(job_id)
        print(
            f"  {view.job_id:<14}{view.tier:<14}{view.job_type.value:<26}"
            f"{view.status.value:<11}{view.retry_count:>8}"
        )
    return 0


async def _main_async(args) -> int:
    overrides = {}
    if args.db:
        overrides["job_db_path"] = args.db
    if args.tiers:
        overrides["tiers_path"] = args.tiers
    if args.results_dir:
        overrides["results_dir"] = args.results_dir
    if args.fast:
        overrides.update(admission_interval_seconds=0.2, poll_interval_seconds=0.5)
    settings = SchedulerSettings(**overrides)

    store = JobStore(settings.job_db_path)
    await store.initialize()
    try:
        scheduler = JobScheduler(store, settings=settings)

        if args.status:
            try:
                view = await scheduler.get_job(args.status)
            except JobNotFoundError as e:
                print(str(e), file=sys.stderr)
                return 1
            _print_json(view.model_dump(mode="json"))
            return 0

        if args.list:
            views = await scheduler.list_jobs(limit=args.limit)
            _print_json({
                "queue": await scheduler.queue_status(),
                "jobs": [v.model_dump(mode="json") for v in views],
            })
            return 0

        if args.demo:
            return await _run_demo(scheduler, args.demo, args.timeout)

        # Serve: run the loops until interrupted.
        await scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.shutdown()
        return 0
    finally:
        await store.close()


def main():
    """Parse CLI arguments and run the scheduler."""
    parser = argparse.ArgumentParser(
        description="Tiered background job scheduler",
    )
    parser.add_argument("--demo", type=int, metavar="N", help="Submit N demo jobs and run until idle")
    parser.add_argument("--status", type=str, metavar="JOB_ID", help="Show one job and exit")
    parser.add_argument("--list", action="store_true", help="Show recent jobs and queue status")
    parser.add_argument("--limit", type=int, default=20, help="Jobs shown by --list (default: 20)")
    parser.add_argument("--tiers", type=str, help="Tier configuration YAML")
    parser.add_argument("--db", type=str, help="SQLite job database path")
    parser.add_argument("--results-dir", type=str, help="Directory for local backend result files")
    parser.add_argument("--fast", action="store_true", help="Use sub-second admission/poll intervals")
    parser.add_argument("--timeout", type=float, default=600.0, help="Demo timeout in seconds")
    parser.add_argument("--log-level", default=LOG_LEVEL, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-format", default=LOG_FORMAT, choices=["structured", "plain"])
    args = parser.parse_args()

    configure_logging(args.log_level, args.log_format)
    log_config_issues()

    try:
        code = asyncio.run(_main_async(args))
    except KeyboardInterrupt:
        code = 130
    except SchedulerError as e:
        logger.error("%s", e)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
