"""
microq — a lightweight job queue over a shared persistent store.

Producers enqueue named jobs with arbitrary parameters. One or more
dispatchers, in any number of processes, poll the store, atomically claim
the next eligible job, run the handler registered for its name and record
the outcome on the job.

The store's atomic find-and-modify is the only coordination between
dispatchers: there are no locks, leases or heartbeats. A job is claimed by
exactly one dispatcher; a dispatcher that crashes mid-job leaves it
DEQUEUED until the next recover() (run by default when a dispatcher starts).

Quick start
-----------
    import asyncio
    from microq import Dispatcher, InMemoryJobStore, JobQueue

    async def resize(params, job):
        return {"width": params["width"] // 2}

    async def main():
        dispatcher = Dispatcher(JobQueue(InMemoryJobStore()))
        dispatcher.on("completed", lambda job: print(job.id, job.result))

        async with dispatcher:
            await dispatcher.enqueue("resize", {"width": 800}, priority=10)
            await dispatcher.start({"resize": resize}, interval=0.5)
            await asyncio.sleep(1)

    asyncio.run(main())

Store adapters
--------------
Built-in adapters (no extra deps):
  - InMemoryJobStore         — for tests and examples
  - LocalFileSystemJobStore  — POSIX single-machine (fcntl.flock)

Optional adapters (install extras):
  - MongoJobStore  (pip install "microq[mongo]")

Custom adapters implement the five-method JobStorePort:
  insert, find, update, remove, find_and_modify

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (Job, JobStatus, JobFilter, StoreSnapshot)
  ports/    — Protocol interfaces (JobStorePort)
  core/     — business logic (JobQueue, Dispatcher, EventEmitter)
  adapters/ — concrete store implementations
"""
from __future__ import annotations

from microq.adapters.store.filesystem import LocalFileSystemJobStore
from microq.adapters.store.memory import InMemoryJobStore
from microq.config import DispatcherOptions, MicroqSettings, get_settings
from microq.core.dispatcher import Dispatcher
from microq.core.events import Event, EventEmitter
from microq.core.queue import JobQueue
from microq.domain.errors import (
    DispatcherStateError,
    JobNotFoundError,
    MicroqError,
    StorageError,
    WorkerRegistrationError,
)
from microq.domain.models import Job, JobStatus
from microq.domain.query import CLAIM_ORDER, JobFilter
from microq.domain.snapshot import StoreSnapshot
from microq.ports.store import JobStorePort

__all__ = [
    # Domain models
    "Job",
    "JobStatus",
    "JobFilter",
    "StoreSnapshot",
    "CLAIM_ORDER",
    # Errors
    "MicroqError",
    "JobNotFoundError",
    "StorageError",
    "WorkerRegistrationError",
    "DispatcherStateError",
    # Port (for typing custom adapters)
    "JobStorePort",
    # High-level API
    "JobQueue",
    "Dispatcher",
    "Event",
    "EventEmitter",
    # Configuration
    "DispatcherOptions",
    "MicroqSettings",
    "get_settings",
    # Built-in store adapters
    "InMemoryJobStore",
    "LocalFileSystemJobStore",
]
