"""
JobQueue — the queue engine.

Every operation is a single call against the JobStorePort:

  enqueue   → insert
  dequeue   → find_and_modify   (the atomic claim)
  complete  → find_and_modify   (guarded by status=dequeued)
  fail      → find_and_modify   (guarded by status=dequeued)
  recover   → update(multi=True)
  cleanup   → remove
  query     → find

The engine keeps no state of its own, so any number of JobQueue instances
(in any number of processes) can share one store. Exclusivity of a claim
comes entirely from the store's find_and_modify.
"""
from __future__ import annotations

import dataclasses
import traceback
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog

from microq.domain.errors import JobNotFoundError
from microq.domain.models import TERMINAL_STATUSES, Job, JobStatus, utcnow
from microq.domain.query import CLAIM_ORDER, JobFilter
from microq.ports.store import JobStorePort

logger = structlog.get_logger(__name__)


@dataclasses.dataclass
class JobQueue:
    """
    Stateless wrapper around JobStorePort.

    All methods are async and safe to call from multiple coroutines.
    Store failures propagate to the caller unchanged.
    """

    store: JobStorePort

    # ------------------------------------------------------------------ #
    # Producer side                                                        #
    # ------------------------------------------------------------------ #

    async def enqueue(
        self,
        name: str,
        params: Any = None,
        *,
        priority: float | None = None,
    ) -> Job:
        """Insert a new ENQUEUED job. Returns the stored Job with its id."""
        job = await self.store.insert(Job.new(name, params, priority))
        logger.debug("job_enqueued", job_id=job.id, job_name=name, priority=priority)
        return job

    # ------------------------------------------------------------------ #
    # Consumer side                                                        #
    # ------------------------------------------------------------------ #

    async def dequeue(self, names: Iterable[str]) -> Job | None:
        """
        Claim the next ENQUEUED job whose name is in `names`.

        Highest priority wins, jobs without a priority come last, and ties
        go to the earliest inserted job. Returns the claimed job (now
        DEQUEUED) or None when nothing is eligible.
        """
        names = frozenset((names,) if isinstance(names, str) else names)
        if not names:
            return None

        logger.debug("polling_job_queue", job_names=sorted(names))
        job = await self.store.find_and_modify(
            JobFilter(statuses=frozenset({JobStatus.ENQUEUED}), names=names),
            {"status": JobStatus.DEQUEUED, "dequeued_at": utcnow()},
            sort=CLAIM_ORDER,
            new=True,
        )
        if job is None:
            logger.debug("queue_empty")
            return None

        logger.debug("job_claimed", job_id=job.id, job_name=job.name)
        return job

    async def complete(self, job: Job, result: Any = None) -> Job:
        """Record a successful outcome. Raises JobNotFoundError if `job` is not DEQUEUED."""
        return await self._finish(
            job,
            {"status": JobStatus.COMPLETED, "result": result, "ended_at": utcnow()},
        )

    async def fail(self, job: Job, exc: BaseException) -> Job:
        """Record a failed outcome with the exception message and traceback."""
        return await self._finish(
            job,
            {
                "status": JobStatus.FAILED,
                "error": str(exc) or type(exc).__name__,
                "stack": "".join(
                    traceback.format_exception(type(exc), exc, exc.__traceback__)
                ),
                "ended_at": utcnow(),
            },
        )

    # ------------------------------------------------------------------ #
    # Maintenance                                                          #
    # ------------------------------------------------------------------ #

    async def recover(self) -> int:
        """
        Return every DEQUEUED job to ENQUEUED, stamping recovered_at.

        Meant to run once before polling starts: a job left DEQUEUED by a
        crashed process would otherwise never be picked up again.
        Returns the number of jobs recovered.
        """
        count = await self.store.update(
            JobFilter(statuses=frozenset({JobStatus.DEQUEUED})),
            {"status": JobStatus.ENQUEUED, "recovered_at": utcnow()},
            multi=True,
        )
        if count:
            logger.info("jobs_recovered", count=count)
        return count

    async def cleanup(self, before: datetime | None = None) -> int:
        """
        Delete COMPLETED and FAILED jobs enqueued at or before `before` (default now).

        ENQUEUED and DEQUEUED jobs are never removed. Returns the count removed.
        """
        cutoff = before if before is not None else utcnow()
        count = await self.store.remove(
            JobFilter(statuses=TERMINAL_STATUSES, enqueued_before=cutoff)
        )
        logger.info("jobs_cleaned_up", count=count, before=cutoff.isoformat())
        return count

    async def query(self, status: JobStatus | str = JobStatus.ENQUEUED) -> list[Job]:
        """All jobs currently in `status`, in insertion order."""
        return await self.store.find(JobFilter(statuses=frozenset({JobStatus(status)})))

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    async def _finish(self, job: Job, changes: dict[str, Any]) -> Job:
        if job.id is None:
            raise JobNotFoundError(None)
        # The status guard keeps terminal records immutable.
        updated = await self.store.find_and_modify(
            JobFilter.by_id(job.id, JobStatus.DEQUEUED),
            changes,
            new=True,
        )
        if updated is None:
            raise JobNotFoundError(job.id, JobStatus.DEQUEUED.value)
        return updated
