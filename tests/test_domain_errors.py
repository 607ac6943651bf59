import pytest

from microq.domain.errors import (
    DispatcherStateError,
    JobNotFoundError,
    MicroqError,
    StorageError,
    WorkerRegistrationError,
)


def test_microq_error_is_exception():
    err = MicroqError("test message")
    assert isinstance(err, Exception)
    assert str(err) == "test message"


def test_job_not_found_stores_job_id():
    err = JobNotFoundError(42)
    assert isinstance(err, MicroqError)
    assert err.job_id == 42
    assert err.status is None
    assert "42" in str(err)


def test_job_not_found_with_status():
    err = JobNotFoundError(7, "dequeued")
    assert err.status == "dequeued"
    assert "7" in str(err)
    assert "dequeued" in str(err)


def test_storage_error_stores_cause_and_message():
    cause = RuntimeError("disk full")
    err = StorageError("write failed", cause)
    assert isinstance(err, MicroqError)
    assert err.cause is cause
    assert "write failed" in str(err)
    assert "disk full" in str(err)


def test_error_hierarchy():
    assert issubclass(JobNotFoundError, MicroqError)
    assert issubclass(StorageError, MicroqError)
    assert issubclass(WorkerRegistrationError, MicroqError)
    assert issubclass(DispatcherStateError, MicroqError)
    assert issubclass(MicroqError, Exception)


def test_can_catch_subclass_as_base():
    with pytest.raises(MicroqError):
        raise WorkerRegistrationError("no workers")
