"""SQLite-backed persistence for job records."""
from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

import aiosqlite

from .models import JobRecord, JobStatus, JobType, utc_now


class JobStore:
    """Async SQLite store for job lifecycle tracking.

    Every status transition is a guarded ``UPDATE ... WHERE status = ?`` and
    reports whether it applied, so callers can treat it as a compare-and-set.
    """

    def __init__(self, db_path: str = "scheduler_jobs.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the jobs table if it doesn't exist."""
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL UNIQUE,
                owner_id TEXT NOT NULL,
                tier TEXT NOT NULL,
                job_type TEXT NOT NULL,
                params TEXT DEFAULT '{}',
                priority INTEGER DEFAULT 0,
                estimated_duration_minutes INTEGER DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'queued',
                progress INTEGER DEFAULT 0,
                retry_count INTEGER DEFAULT 0,
                max_retries INTEGER DEFAULT 3,
                external_handle TEXT,
                adapter_kind TEXT,
                result_uris TEXT DEFAULT '[]',
                error_message TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                failed_at TEXT
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_status_tier ON jobs (status, tier)"
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    async def _write(self, sql: str, params: tuple) -> int:
        """Execute one statement, commit, and return the affected row count."""
        db = await self._conn()
        async with self._write_lock:
            cur = await db.execute(sql, params)
            count = cur.rowcount
            await cur.close()
            await db.commit()
        return count

    async def _select(self, sql: str, params: tuple = ()) -> List[JobRecord]:
        db = await self._conn()
        async with db.execute(sql, params) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_record(r, desc) for r in rows]

    # ── CRUD ─────────────────────────────────────────────────────────

    async def create_job(
        self,
        owner_id: str,
        tier: str,
        job_type: JobType,
        params: Dict[str, Any] | None = None,
        *,
        priority: int = 0,
        estimated_duration_minutes: int = 0,
        max_retries: int = 3,
    ) -> JobRecord:
        """Insert a new queued job and return its record."""
        rec = JobRecord(
            job_id=uuid.uuid4().hex[:12],
            owner_id=owner_id,
            tier=tier,
            job_type=job_type,
            params=params or {},
            priority=priority,
            estimated_duration_minutes=estimated_duration_minutes,
            max_retries=max_retries,
        )
        await self._write(
            "INSERT INTO jobs (job_id, owner_id, tier, job_type, params, priority, "
            "estimated_duration_minutes, status, max_retries, created_at) "
            "VALUES (?,?,?,?,?,?,?,?,?,?)",
            (
                rec.job_id,
                rec.owner_id,
                rec.tier,
                rec.job_type.value,
                json.dumps(rec.params),
                rec.priority,
                rec.estimated_duration_minutes,
                rec.status.value,
                rec.max_retries,
                rec.created_at,
            ),
        )
        return rec

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Fetch a single job by ID."""
        rows = await self._select("SELECT * FROM jobs WHERE job_id = ?", (job_id,))
        return rows[0] if rows else None

    async def list_jobs(self, limit: int = 50, status: JobStatus | None = None) -> List[JobRecord]:
        """List jobs ordered by submission (newest first)."""
        if status is None:
            return await self._select("SELECT * FROM jobs ORDER BY seq DESC LIMIT ?", (limit,))
        return await self._select(
            "SELECT * FROM jobs WHERE status = ? ORDER BY seq DESC LIMIT ?",
            (JobStatus(status).value, limit),
        )

    async def list_queued(self) -> List[JobRecord]:
        """All queued jobs in submission order (oldest first)."""
        return await self._select(
            "SELECT * FROM jobs WHERE status = ? ORDER BY seq ASC", (JobStatus.queued.value,)
        )

    async def list_running(self) -> List[JobRecord]:
        return await self._select(
            "SELECT * FROM jobs WHERE status = ? ORDER BY seq ASC", (JobStatus.running.value,)
        )

    async def count_running_by_tier(self) -> Dict[str, int]:
        db = await self._conn()
        async with db.execute(
            "SELECT tier, COUNT(*) FROM jobs WHERE status = ? GROUP BY tier",
            (JobStatus.running.value,),
        ) as cur:
            rows = await cur.fetchall()
        return {tier: count for tier, count in rows}

    async def count_by_status(self) -> Dict[str, int]:
        db = await self._conn()
        async with db.execute("SELECT status, COUNT(*) FROM jobs GROUP BY status") as cur:
            rows = await cur.fetchall()
        return {status: count for status, count in rows}

    # ── Transitions ──────────────────────────────────────────────────

    async def claim_job(self, job_id: str, started_at: str | None = None) -> bool:
        """``queued → running``; False if the job was not queued."""
        count = await self._write(
            "UPDATE jobs SET status = ?, started_at = ?, progress = 0, "
            "external_handle = NULL, adapter_kind = NULL "
            "WHERE job_id = ? AND status = ?",
            (JobStatus.running.value, started_at or utc_now(), job_id, JobStatus.queued.value),
        )
        return count == 1

    async def attach_handle(self, job_id: str, handle: str, adapter_kind: str) -> bool:
        """Record the backend handle; refuses if the job already has one."""
        count = await self._write(
            "UPDATE jobs SET external_handle = ?, adapter_kind = ? "
            "WHERE job_id = ? AND status = ? AND external_handle IS NULL",
            (handle, adapter_kind, job_id, JobStatus.running.value),
        )
        return count == 1

    async def update_progress(self, job_id: str, progress: int) -> bool:
        """Raise progress of a running job; never lowers it and stays below 100."""
        value = max(0, min(int(progress), 99))
        count = await self._write(
            "UPDATE jobs SET progress = MAX(progress, ?) WHERE job_id = ? AND status = ?",
            (value, job_id, JobStatus.running.value),
        )
        return count == 1

    async def complete_job(
        self,
        job_id: str,
        result_uris: List[str],
        *,
        error_message: str | None = None,
    ) -> bool:
        count = await self._write(
            "UPDATE jobs SET status = ?, progress = 100, result_uris = ?, "
            "error_message = COALESCE(?, error_message), completed_at = ? "
            "WHERE job_id = ? AND status = ?",
            (
                JobStatus.completed.value,
                json.dumps(list(result_uris)),
                error_message,
                utc_now(),
                job_id,
                JobStatus.running.value,
            ),
        )
        return count == 1

    async def requeue_job(self, job_id: str, retry_count: int, error_message: str) -> bool:
        """``running → queued`` for another attempt, clearing the stale handle."""
        count = await self._write(
            "UPDATE jobs SET status = ?, retry_count = ?, error_message = ?, progress = 0, "
            "external_handle = NULL, adapter_kind = NULL, started_at = NULL "
            "WHERE job_id = ? AND status = ?",
            (JobStatus.queued.value, retry_count, error_message, job_id, JobStatus.running.value),
        )
        return count == 1

    async def fail_job(self, job_id: str, retry_count: int, error_message: str) -> bool:
        count = await self._write(
            "UPDATE jobs SET status = ?, retry_count = ?, error_message = ?, failed_at = ? "
            "WHERE job_id = ? AND status = ?",
            (
                JobStatus.failed.value,
                retry_count,
                error_message,
                utc_now(),
                job_id,
                JobStatus.running.value,
            ),
        )
        return count == 1

    async def cancel_job(self, job_id: str, expected: JobStatus, reason: str = "Cancelled") -> bool:
        """Mark a queued or running job as cancelled."""
        if expected not in (JobStatus.queued, JobStatus.running):
            return False
        count = await self._write(
            "UPDATE jobs SET status = ?, error_message = ?, completed_at = ? "
            "WHERE job_id = ? AND status = ?",
            (JobStatus.cancelled.value, reason, utc_now(), job_id, expected.value),
        )
        return count == 1

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _row_to_record(row, description) -> JobRecord:
        cols = [d[0] for d in description]
        d = dict(zip(cols, row))
        d.pop("seq", None)
        d["params"] = json.loads(d.get("params") or "{}")
        d["result_uris"] = json.loads(d.get("result_uris") or "[]")
        return JobRecord(**d)
