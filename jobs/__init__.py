"""Tiered background job scheduler backed by SQLite."""
from .admission import AdmissionController, TierSlots
from .dispatcher import Dispatcher
from .errors import (
    AdmissionError,
    ConfigValidationError,
    DispatchError,
    InvalidParamsError,
    JobNotFoundError,
    ResultRetrievalWarning,
    SchedulerError,
    TerminalExecutionFailure,
    TransientPollError,
    UnauthorizedSubmissionError,
    UnknownJobTypeError,
    UnknownTierError,
)
from .models import JobRecord, JobStatus, JobType, JobView
from .poller import StatusPoller
from .retry import RetryHandler
from .scheduler import JobScheduler
from .store import JobStore

__all__ = [
    "AdmissionController",
    "AdmissionError",
    "ConfigValidationError",
    "DispatchError",
    "Dispatcher",
    "InvalidParamsError",
    "JobNotFoundError",
    "JobRecord",
    "JobScheduler",
    "JobStatus",
    "JobStore",
    "JobType",
    "JobView",
    "ResultRetrievalWarning",
    "RetryHandler",
    "SchedulerError",
    "StatusPoller",
    "TerminalExecutionFailure",
    "TierSlots",
    "TransientPollError",
    "UnauthorizedSubmissionError",
    "UnknownJobTypeError",
    "UnknownTierError",
]
