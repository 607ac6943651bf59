"""
JobStorePort — the single port in microq.

Any object satisfying this structural Protocol can act as the persistent
store. No base class or registration is required.

Atomicity contract
------------------
find_and_modify(query, changes, sort=..., new=True)
  - selects the first record matching `query` under `sort`, applies
    `changes` and returns it, as one indivisible step
  - two concurrent callers racing on the same eligible record never both
    receive it; this is the only cross-process coordination microq uses
  - returns None when nothing matches

update / remove are single-call bulk operations returning a count.
They need not be atomic as a whole, but each record they touch must be
updated atomically.

`changes` is a mapping of Job field name to new value ($set semantics).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from microq.domain.models import Job
from microq.domain.query import JobFilter, Sort


@runtime_checkable
class JobStorePort(Protocol):
    """
    Minimal interface required by microq core.

    Implementing adapters (built-in):
      - InMemoryJobStore        — asyncio.Lock-based, for testing
      - LocalFileSystemJobStore — fcntl.flock-based, POSIX single-machine
      - MongoJobStore           — MongoDB find_one_and_update (pymongo async)
    """

    async def insert(self, job: Job) -> Job:
        """
        Persist a new job.

        Returns
        -------
        Job : the stored record, carrying its store-assigned id. Ids grow
              monotonically in insertion order.
        """
        ...

    async def find(self, query: JobFilter) -> list[Job]:
        """Return every record matching `query`, in insertion order."""
        ...

    async def update(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        multi: bool = False,
    ) -> int:
        """Apply `changes` to the first (or every, with multi) match. Returns the count."""
        ...

    async def remove(self, query: JobFilter) -> int:
        """Delete every record matching `query`. Returns the count."""
        ...

    async def find_and_modify(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        sort: Sort = (),
        new: bool = True,
    ) -> Job | None:
        """
        Atomically select one record and apply `changes` to it.

        Parameters
        ----------
        query   : which records are eligible
        changes : field values to set on the selected record
        sort    : ordering used to pick among eligible records
        new     : return the post-update record (True) or the pre-update one

        Returns
        -------
        Job | None : the selected record, or None when nothing matches

        Raises
        ------
        StorageError  for any I/O failure
        """
        ...
