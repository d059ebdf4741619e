"""Scheduler exception hierarchy."""
from __future__ import annotations


class SchedulerError(Exception):
    """Base class for every error raised by the scheduler core."""


# ── Submission (surfaced synchronously) ─────────────────────────────


class AdmissionError(SchedulerError):
    """A submission was rejected; no job was created."""


class UnknownTierError(AdmissionError):
    """The requested tier is not present in the tier table."""


class UnknownJobTypeError(AdmissionError):
    """The requested job type has no registered backend adapter."""


class InvalidParamsError(AdmissionError):
    """Job parameters are not a JSON-style mapping."""


class UnauthorizedSubmissionError(AdmissionError):
    """The owner is not allowed to submit jobs on the requested tier."""


class JobNotFoundError(SchedulerError):
    """Requested job ID does not exist."""


class ConfigValidationError(SchedulerError):
    """Tier or scheduler configuration is invalid."""


# ── Execution (absorbed internally) ─────────────────────────────────


class DispatchError(SchedulerError):
    """A backend adapter rejected ``submit``."""


class TransientPollError(SchedulerError):
    """A ``poll_status`` call itself failed; polling continues."""


class TerminalExecutionFailure(SchedulerError):
    """The backend reported the execution as failed."""


class ResultRetrievalWarning(SchedulerError):
    """Results could not be fetched for a completed execution."""
