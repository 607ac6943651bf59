"""
LocalFileSystemJobStore — fcntl.flock-based job store for POSIX systems.

Suitable for local development, single-machine deployments with several
worker processes, or integration tests that need a persistent file rather
than in-memory state.

NOT suitable for multi-machine deployments. Use MongoJobStore for
distributed workloads.

Atomicity
---------
The whole job table lives in one JSON file (see core/codec.py). Every
mutating operation acquires an exclusive flock, reads the table, applies
the change and rewrites the file within the same lock scope. Reads take a
shared lock. find_and_modify is therefore indivisible across every process
on the host that uses the same path.

A file that is absent or empty is treated as an empty store.

POSIX-only (Linux, macOS). Not compatible with NFS or distributed filesystems.
"""

from __future__ import annotations

import asyncio
import dataclasses
import fcntl
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, TypeVar

from microq.core import codec
from microq.domain.errors import StorageError
from microq.domain.models import Job
from microq.domain.query import JobFilter, Sort
from microq.domain.snapshot import StoreSnapshot

T = TypeVar("T")

MutationFn = Callable[[StoreSnapshot], tuple[StoreSnapshot, T]]


@dataclasses.dataclass
class LocalFileSystemJobStore:
    """
    Stores the job table in a local file.

    Parameters
    ----------
    path : path to the JSON state file (parent directory created if absent)
    """

    path: Path

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def insert(self, job: Job) -> Job:
        return await self._run(self._sync_mutate, lambda s: s.with_job_inserted(job))

    async def find(self, query: JobFilter) -> list[Job]:
        snapshot = await self._run(self._sync_read)
        return snapshot.find(query)

    async def update(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        multi: bool = False,
    ) -> int:
        return await self._run(
            self._sync_mutate,
            lambda s: s.with_jobs_updated(query, changes, multi=multi),
        )

    async def remove(self, query: JobFilter) -> int:
        return await self._run(self._sync_mutate, lambda s: s.with_jobs_removed(query))

    async def find_and_modify(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        sort: Sort = (),
        new: bool = True,
    ) -> Job | None:
        def _fn(snapshot: StoreSnapshot) -> tuple[StoreSnapshot, Job | None]:
            snapshot, before, after = snapshot.with_job_modified(query, changes, sort)
            return snapshot, after if new else before

        return await self._run(self._sync_mutate, _fn)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking operation in a worker thread, wrapping I/O errors."""
        try:
            return await asyncio.to_thread(fn, *args)
        except OSError as exc:
            raise StorageError(f"Job store {self.path} failed", exc) from exc

    # ------------------------------------------------------------------ #
    # Synchronous implementations (executed in a thread-pool worker)      #
    # ------------------------------------------------------------------ #

    def _sync_read(self) -> StoreSnapshot:
        if not self.path.exists():
            return StoreSnapshot()
        with open(self.path, "rb") as fh:
            fcntl.flock(fh, fcntl.LOCK_SH)
            try:
                content = fh.read()
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)
        return self._decode(content)

    def _sync_mutate(self, fn: MutationFn[T]) -> T:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)

            current = self._decode(os.read(fd, os.fstat(fd).st_size))
            snapshot, outcome = fn(current)

            # Helpers return the same instance when nothing changed.
            if snapshot is not current:
                try:
                    content = codec.encode(snapshot)
                except ValueError as exc:
                    raise StorageError(
                        f"Job store {self.path} cannot serialise its state", exc
                    ) from exc
                os.ftruncate(fd, 0)
                os.lseek(fd, 0, os.SEEK_SET)
                os.write(fd, content)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

        return outcome

    def _decode(self, content: bytes) -> StoreSnapshot:
        try:
            return codec.decode(content)
        except ValueError as exc:
            raise StorageError(f"Job store {self.path} is corrupt", exc) from exc
