"""
Backend adapter registry.

Maps job types to the adapter kind that executes them, and adapter kinds to
live adapter instances. Adding a new job type only requires adding an entry
to ``JOB_TYPE_ADAPTERS``.
"""
from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

from ..errors import UnknownJobTypeError
from ..models import JobType
from .base import AdapterKind, BackendAdapter

# Registry of job type -> adapter kind
JOB_TYPE_ADAPTERS: Mapping[JobType, AdapterKind] = {
    JobType.market_data_analysis: AdapterKind.training,
    JobType.anomaly_detection: AdapterKind.training,
    JobType.sentiment_analysis: AdapterKind.training,
    JobType.correlation_analysis: AdapterKind.training,
    JobType.portfolio_optimization: AdapterKind.batch,
    JobType.risk_assessment: AdapterKind.batch,
    JobType.batch_data_processing: AdapterKind.batch,
    JobType.backtesting: AdapterKind.batch,
    JobType.financial_forecasting: AdapterKind.function,
    JobType.automated_reporting: AdapterKind.function,
}


class AdapterRegistry:
    """Adapter instances keyed by kind, populated once at startup."""

    def __init__(
        self,
        adapters: Iterable[BackendAdapter] = (),
        job_types: Optional[Mapping[JobType, AdapterKind]] = None,
    ) -> None:
        self._adapters: Dict[AdapterKind, BackendAdapter] = {}
        self._job_types: Dict[JobType, AdapterKind] = dict(job_types or JOB_TYPE_ADAPTERS)
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: BackendAdapter) -> None:
        self._adapters[AdapterKind(adapter.kind)] = adapter

    def kind_for(self, job_type: str) -> AdapterKind:
        """
        Resolve the adapter kind for *job_type*.

        Raises:
            UnknownJobTypeError: If the job type is unknown or its adapter
                kind has no registered instance.
        """
        try:
            kind = self._job_types[JobType(job_type)]
        except (KeyError, ValueError) as e:
            available = ", ".join(sorted(t.value for t in self._job_types))
            raise UnknownJobTypeError(
                f"Unknown job type: {job_type}. Available: {available}"
            ) from e
        if kind not in self._adapters:
            raise UnknownJobTypeError(
                f"No {kind.value} adapter registered for job type {job_type}"
            )
        return kind

    def adapter_for(self, job_type: str) -> BackendAdapter:
        return self._adapters[self.kind_for(job_type)]

    def get(self, kind: str) -> BackendAdapter:
        """Adapter by kind; ``KeyError`` if none is registered."""
        try:
            return self._adapters[AdapterKind(kind)]
        except ValueError as e:
            raise KeyError(kind) from e
