"""
StoreSnapshot — the complete job table as a pure value type.

Used by the adapters that keep the whole table in one place
(InMemoryJobStore holds it in memory, LocalFileSystemJobStore in a JSON
file). Every mutation helper returns a new snapshot together with whatever
the caller needs to report back, so an adapter only has to make the
read-mutate-write cycle atomic.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from microq.domain.models import Job
from microq.domain.query import JobFilter, Sort, sort_jobs


class StoreSnapshot(BaseModel):
    """
    jobs    — records in insertion (id) order
    next_id — id handed to the next inserted job; never reused
    """

    model_config = ConfigDict(frozen=True)

    jobs: tuple[Job, ...] = ()
    next_id: int = 1

    # ------------------------------------------------------------------ #
    # Query helpers                                                        #
    # ------------------------------------------------------------------ #

    def find(self, query: JobFilter) -> list[Job]:
        return [j for j in self.jobs if query.matches(j)]

    # ------------------------------------------------------------------ #
    # Mutation helpers — each returns a new StoreSnapshot                  #
    # ------------------------------------------------------------------ #

    def with_job_inserted(self, job: Job) -> tuple["StoreSnapshot", Job]:
        """Assign the next id to `job` and append it."""
        stored = job.with_id(self.next_id)
        snapshot = self.model_copy(
            update={"jobs": self.jobs + (stored,), "next_id": self.next_id + 1}
        )
        return snapshot, stored

    def with_job_modified(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        sort: Sort = (),
    ) -> tuple["StoreSnapshot", Job | None, Job | None]:
        """
        Apply `changes` to the first job matching `query` under `sort`.

        Returns (snapshot, before, after). Both jobs are None and the
        snapshot is self when nothing matches.
        """
        candidates = sort_jobs(self.find(query), sort)
        if not candidates:
            return self, None, None
        before = candidates[0]
        after = before.with_changes(changes)
        jobs = tuple(after if j.id == before.id else j for j in self.jobs)
        return self.model_copy(update={"jobs": jobs}), before, after

    def with_jobs_updated(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        multi: bool = False,
    ) -> tuple["StoreSnapshot", int]:
        """Apply `changes` to the first (or, with multi, every) match."""
        count = 0
        jobs: list[Job] = []
        for j in self.jobs:
            if (multi or count == 0) and query.matches(j):
                jobs.append(j.with_changes(changes))
                count += 1
            else:
                jobs.append(j)
        if count == 0:
            return self, 0
        return self.model_copy(update={"jobs": tuple(jobs)}), count

    def with_jobs_removed(self, query: JobFilter) -> tuple["StoreSnapshot", int]:
        kept = tuple(j for j in self.jobs if not query.matches(j))
        removed = len(self.jobs) - len(kept)
        if removed == 0:
            return self, 0
        return self.model_copy(update={"jobs": kept}), removed
