"""Job data models."""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStatus(str, enum.Enum):
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed, JobStatus.cancelled)


class JobType(str, enum.Enum):
    """Kinds of analysis work accepted by the scheduler."""

    market_data_analysis = "market_data_analysis"
    portfolio_optimization = "portfolio_optimization"
    risk_assessment = "risk_assessment"
    financial_forecasting = "financial_forecasting"
    batch_data_processing = "batch_data_processing"
    automated_reporting = "automated_reporting"
    anomaly_detection = "anomaly_detection"
    sentiment_analysis = "sentiment_analysis"
    correlation_analysis = "correlation_analysis"
    backtesting = "backtesting"


class JobRecord(BaseModel):
    """Persistent representation of a scheduled compute job."""

    job_id: str
    owner_id: str
    tier: str
    job_type: JobType
    params: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    estimated_duration_minutes: int = 0
    status: JobStatus = JobStatus.queued
    progress: int = 0
    retry_count: int = 0
    max_retries: int = 3
    external_handle: Optional[str] = None
    adapter_kind: Optional[str] = None
    result_uris: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobView(BaseModel):
    """Read-only snapshot returned to callers of ``get_job``."""

    job_id: str
    owner_id: str
    tier: str
    job_type: JobType
    status: JobStatus
    priority: int
    estimated_duration_minutes: int
    progress: int
    retry_count: int
    max_retries: int
    result_uris: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None

    @classmethod
    def from_record(cls, rec: JobRecord) -> "JobView":
        return cls(**rec.model_dump(include=set(cls.model_fields)))
