"""
Exception hierarchy for microq.

MicroqError
├── JobNotFoundError         — no record with that id in the expected state
├── StorageError             — underlying I/O failure (wraps original exception)
├── WorkerRegistrationError  — invalid worker mapping passed to start()
└── DispatcherStateError     — lifecycle call made in the wrong dispatcher state
"""

from __future__ import annotations


class MicroqError(Exception):
    """Base class for all microq exceptions."""


class JobNotFoundError(MicroqError):
    """
    Raised when an outcome is recorded for a job that is no longer claimable.

    The record was either removed or has already reached a terminal state.
    Terminal records are never overwritten.
    """

    def __init__(self, job_id: int | None, status: str | None = None) -> None:
        self.job_id = job_id
        self.status = status
        if status is None:
            message = f"Job {job_id!r} not found"
        else:
            message = f"Job {job_id!r} not found in status {status!r}"
        super().__init__(message)


class StorageError(MicroqError):
    """
    Wraps an underlying I/O failure from a store adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the storage backend.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class WorkerRegistrationError(MicroqError):
    """Raised by Dispatcher.start() when the worker mapping is unusable."""


class DispatcherStateError(MicroqError):
    """Raised when start() is called on a dispatcher that is running or not yet joined."""
