"""
Filters and sort orders understood by every store adapter.

JobFilter is a small, typed subset of a document-store query: each set
field narrows the match, unset fields match anything. Adapters either
evaluate it in memory (matches) or translate it to their native query
language (see adapters/store/mongo.py).

Sort orders are tuples of (field, direction) pairs, direction 1 for
ascending and -1 for descending. None compares lower than any value,
matching BSON null ordering, so an absent priority sorts last under
CLAIM_ORDER.
"""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from microq.domain.models import Job, JobStatus

Sort = tuple[tuple[str, int], ...]

# Highest priority first, then insertion order.
CLAIM_ORDER: Sort = (("priority", -1), ("id", 1))


class JobFilter(BaseModel):
    """
    Conjunctive filter over Job records.

    ids             — match only these ids
    names           — match only these job names (empty set matches nothing)
    statuses        — match only these statuses
    enqueued_before — inclusive upper bound on enqueued_at
    """

    model_config = ConfigDict(frozen=True)

    ids: frozenset[int] | None = None
    names: frozenset[str] | None = None
    statuses: frozenset[JobStatus] | None = None
    enqueued_before: datetime | None = None

    @classmethod
    def by_id(cls, job_id: int, status: JobStatus | None = None) -> "JobFilter":
        statuses = None if status is None else frozenset({status})
        return cls(ids=frozenset({job_id}), statuses=statuses)

    def matches(self, job: Job) -> bool:
        if self.ids is not None and job.id not in self.ids:
            return False
        if self.names is not None and job.name not in self.names:
            return False
        if self.statuses is not None and job.status not in self.statuses:
            return False
        if self.enqueued_before is not None and job.enqueued_at > self.enqueued_before:
            return False
        return True


def _null_low(field: str) -> Callable[[Job], tuple[bool, Any]]:
    def key(job: Job) -> tuple[bool, Any]:
        value = getattr(job, field)
        return (value is not None, value)

    return key


def sort_jobs(jobs: Iterable[Job], sort: Sort) -> list[Job]:
    """
    Return `jobs` ordered by `sort`.

    Applies one stable sort per key, least significant first.
    """
    ordered = list(jobs)
    for field, direction in reversed(sort):
        if direction not in (1, -1):
            raise ValueError(f"Sort direction for {field!r} must be 1 or -1")
        if field not in Job.model_fields:
            raise ValueError(f"Cannot sort on unknown field {field!r}")
        ordered.sort(key=_null_low(field), reverse=direction < 0)
    return ordered
