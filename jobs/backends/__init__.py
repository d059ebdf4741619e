"""Compute backend adapters and the job-type → adapter table."""
from .base import AdapterKind, BackendAdapter, BackendStatus, StatusReport
from .local import LocalBatchAdapter, LocalFunctionAdapter, LocalTrainingAdapter, local_adapters
from .registry import JOB_TYPE_ADAPTERS, AdapterRegistry

__all__ = [
    "AdapterKind",
    "AdapterRegistry",
    "BackendAdapter",
    "BackendStatus",
    "JOB_TYPE_ADAPTERS",
    "LocalBatchAdapter",
    "LocalFunctionAdapter",
    "LocalTrainingAdapter",
    "StatusReport",
    "local_adapters",
]
