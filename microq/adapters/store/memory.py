"""
InMemoryJobStore — asyncio.Lock-based job store for testing and development.

Keeps the whole job table as a StoreSnapshot in memory. Every operation
runs under one asyncio.Lock, so find_and_modify is indivisible with respect
to every other coroutine on the same event loop, like the atomic
claim of a real document store.

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Mapping
from typing import Any

from microq.domain.models import Job
from microq.domain.query import JobFilter, Sort
from microq.domain.snapshot import StoreSnapshot


@dataclasses.dataclass
class InMemoryJobStore:
    """
    In-process job store.

    Parameters
    ----------
    initial : optional pre-populated snapshot (useful for test setup)
    """

    initial: StoreSnapshot = dataclasses.field(default_factory=StoreSnapshot)

    def __post_init__(self) -> None:
        self._snapshot: StoreSnapshot = self.initial
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def snapshot(self) -> StoreSnapshot:
        """Current table contents (read without taking the lock)."""
        return self._snapshot

    async def insert(self, job: Job) -> Job:
        async with self._lock:
            self._snapshot, stored = self._snapshot.with_job_inserted(job)
            return stored

    async def find(self, query: JobFilter) -> list[Job]:
        async with self._lock:
            return self._snapshot.find(query)

    async def update(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        multi: bool = False,
    ) -> int:
        async with self._lock:
            self._snapshot, count = self._snapshot.with_jobs_updated(
                query, changes, multi=multi
            )
            return count

    async def remove(self, query: JobFilter) -> int:
        async with self._lock:
            self._snapshot, count = self._snapshot.with_jobs_removed(query)
            return count

    async def find_and_modify(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        sort: Sort = (),
        new: bool = True,
    ) -> Job | None:
        async with self._lock:
            self._snapshot, before, after = self._snapshot.with_job_modified(
                query, changes, sort
            )
            return after if new else before
