"""
Domain models for microq — backed by Pydantic v2.

Pydantic handles:
  - JSON serialization / deserialization (via codec.py and the adapters)
  - datetime parsing (ISO-8601 with timezone)
  - enum coercion from the persisted string values
  - field validation when a change set is applied to a record

All models are frozen (immutable). Mutations return new instances,
following a functional-update style.

Lifecycle
---------
    enqueued ──claim──> dequeued ──> completed
        ^                  │    └──> failed
        └────recover───────┘

completed and failed are terminal.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle states for a persisted job."""

    ENQUEUED = "enqueued"
    DEQUEUED = "dequeued"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED}
)

# dequeued -> enqueued is only ever taken by recovery.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.ENQUEUED: frozenset({JobStatus.DEQUEUED}),
    JobStatus.DEQUEUED: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ENQUEUED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class Job(BaseModel):
    """
    A single unit of work stored in the job table.

    id           — store-assigned, monotonically increasing; None until inserted
    name         — logical name used to route the job to a handler
    status       — current lifecycle state
    params       — arbitrary JSON-compatible value handed to the handler
    priority     — higher value = claimed first; None sorts lowest
    enqueued_at  — UTC timestamp set at enqueue time
    dequeued_at  — UTC timestamp of the claim
    recovered_at — UTC timestamp of the last recovery, if any
    ended_at     — UTC timestamp of completion or failure
    result       — handler return value (completed jobs)
    error, stack — exception message and formatted traceback (failed jobs)
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str
    status: JobStatus = JobStatus.ENQUEUED
    params: Any = None
    priority: float | None = None
    enqueued_at: datetime = Field(default_factory=utcnow)
    dequeued_at: datetime | None = None
    recovered_at: datetime | None = None
    ended_at: datetime | None = None
    result: Any = None
    error: str | None = None
    stack: str | None = None

    @classmethod
    def new(
        cls,
        name: str,
        params: Any = None,
        priority: float | None = None,
    ) -> "Job":
        """New ENQUEUED job stamped with enqueued_at now and no id yet."""
        return cls(name=name, params=params, priority=priority)

    def with_id(self, job_id: int) -> "Job":
        """Return a new Job carrying the store-assigned id."""
        return self.model_copy(update={"id": job_id})

    def with_changes(self, changes: Mapping[str, Any]) -> "Job":
        """
        Return a new Job with `changes` applied ($set semantics).

        The result is re-validated so persisted values keep their types.
        Unknown field names raise ValueError.
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        return type(self).model_validate({**self.model_dump(), **changes})
