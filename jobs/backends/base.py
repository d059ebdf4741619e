"""Compute backend adapter contract.

An adapter wraps one execution technology. The scheduler only ever talks to
backends through this interface; what the backend computes is opaque.
"""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...config_structured import ResourceProfile


class AdapterKind(str, enum.Enum):
    training = "training"
    batch = "batch"
    function = "function"


class BackendStatus(str, enum.Enum):
    """Canonical status every backend-specific state is mapped onto."""

    starting = "starting"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class StatusReport(BaseModel):
    status: BackendStatus
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None


class BackendAdapter(ABC):
    """Base class for backend adapters.

    Subclasses set ``kind`` and implement submit / poll / fetch. ``cancel``
    is optional: backends that cannot stop an execution keep the no-op.
    """

    kind: AdapterKind

    @abstractmethod
    async def submit(
        self,
        job_id: str,
        params: Dict[str, Any],
        profile: ResourceProfile,
    ) -> str:
        """Start an execution and return its opaque external handle."""

    @abstractmethod
    async def poll_status(self, handle: str) -> StatusReport:
        """Report the current state of the execution behind *handle*."""

    @abstractmethod
    async def fetch_results(self, handle: str) -> List[str]:
        """Return locators (URIs) for the outputs of a completed execution."""

    async def cancel(self, handle: str) -> None:
        """Best-effort stop of a running execution."""
        return None
