"""
Dispatcher — polls a JobQueue and runs the registered handler for each job.

Usage
-----
    from microq import Dispatcher, InMemoryJobStore, JobQueue

    async def send_email(params, job):
        ...
        return {"delivered": True}

    dispatcher = Dispatcher(JobQueue(InMemoryJobStore()))
    dispatcher.on("failed", lambda job: print(job.error))

    async with dispatcher:
        await dispatcher.enqueue("send_email", {"to": "user@example.com"})
        await dispatcher.start({"send_email": send_email}, interval=1)
        ...
    # leaving the block stops polling and waits for in-flight handlers

Poll loop
---------
Each start() spawns one asyncio task running the loop below, bound to a
stop Event of its own. stop() sets that Event; the loop checks it at every
iteration boundary and wakes from its inter-poll wait as soon as it is set.

    ┌─> stop set? ── yes ──> exit
    │      │ no
    │   [parallel] acquire a concurrency slot
    │   dequeue(worker names)
    │      ├─ none  → emit "empty", wait interval (or stop) ──┐
    │      └─ job   → serial:   await execute_worker          │
    │                 parallel: spawn execute_worker task     │
    └──────────────────────────────────────────────────────────┘

A store failure during dequeue is logged, emitted as "error" and retried
after one interval. A failure while recording an outcome is logged and
emitted the same way; the job stays DEQUEUED until the next recover().
"""
from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import functools
import inspect
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from types import TracebackType
from typing import Any

import structlog

from microq.config import DispatcherOptions
from microq.core.events import Event, EventEmitter, Listener
from microq.core.queue import JobQueue
from microq.domain.errors import DispatcherStateError, WorkerRegistrationError
from microq.domain.models import Job, JobStatus

logger = structlog.get_logger(__name__)

Handler = Callable[[Any, Job], Any]


@dataclasses.dataclass
class Dispatcher:
    """
    Polling consumer for a JobQueue.

    Parameters
    ----------
    queue   : the JobQueue to claim jobs from
    options : defaults for start(); keyword arguments to start() override them
    """

    queue: JobQueue
    options: DispatcherOptions = dataclasses.field(default_factory=DispatcherOptions)

    _events: EventEmitter = dataclasses.field(
        default_factory=EventEmitter, init=False, repr=False
    )
    _stop: asyncio.Event | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _inflight: set[asyncio.Task[Job | None]] = dataclasses.field(
        default_factory=set, init=False, repr=False
    )

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> bool:
        return self._stop is not None and not self._stop.is_set()

    async def start(
        self,
        workers: Mapping[str, Handler],
        *,
        interval: timedelta | float | None = None,
        recover: bool | None = None,
        parallel: bool | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        """
        Register `workers` and start polling.

        Recovery (when enabled) completes before this returns, and a store
        failure during it is raised. Polling then continues in the
        background until stop().

        Raises
        ------
        WorkerRegistrationError  if `workers` is empty or malformed
        DispatcherStateError     if the dispatcher is running, or stopped
                                 but not yet joined
        """
        if self.running:
            raise DispatcherStateError("Dispatcher is already running")
        if (self._task is not None and not self._task.done()) or self._inflight:
            raise DispatcherStateError(
                "Dispatcher is still stopping; await join() before restarting"
            )

        registered = _validate_workers(workers)
        options = self.options.with_overrides(
            interval=interval,
            recover=recover,
            parallel=parallel,
            max_concurrency=max_concurrency,
        )

        stop = asyncio.Event()
        self._stop = stop

        if options.recover:
            try:
                await self.queue.recover()
            except BaseException:
                stop.set()
                raise

        if stop.is_set():
            return

        logger.info(
            "dispatcher_started",
            workers=sorted(registered),
            interval=options.interval.total_seconds(),
            parallel=options.parallel,
            max_concurrency=options.max_concurrency,
        )
        self._task = asyncio.create_task(
            self._poll_loop(stop, options, registered), name="microq-dispatcher"
        )

    def stop(self) -> None:
        """
        Stop claiming new jobs. Idempotent.

        Handlers already running are not cancelled, and a dequeue already in
        flight may still claim (and then run) one more job. Use join() to
        wait for both.
        """
        if self._stop is not None and not self._stop.is_set():
            self._stop.set()
            logger.info("dispatcher_stopping")

    async def join(self) -> None:
        """Wait for the poll loop to exit and every in-flight handler to finish."""
        if self._task is not None:
            await self._task
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self._events.drain()

    async def __aenter__(self) -> "Dispatcher":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()
        await self.join()

    # ------------------------------------------------------------------ #
    # Events                                                               #
    # ------------------------------------------------------------------ #

    def on(self, event: Event | str, listener: Listener) -> Listener:
        """Subscribe to "empty", "completed", "failed" or "error"."""
        return self._events.on(event, listener)

    def off(self, event: Event | str, listener: Listener) -> None:
        self._events.off(event, listener)

    # ------------------------------------------------------------------ #
    # Queue operations (delegated to JobQueue)                            #
    # ------------------------------------------------------------------ #

    async def enqueue(
        self,
        name: str,
        params: Any = None,
        *,
        priority: float | None = None,
    ) -> Job:
        return await self.queue.enqueue(name, params, priority=priority)

    async def query(self, status: JobStatus | str = JobStatus.ENQUEUED) -> list[Job]:
        return await self.queue.query(status)

    async def cleanup(self, before: datetime | None = None) -> int:
        return await self.queue.cleanup(before)

    async def recover(self) -> int:
        return await self.queue.recover()

    # ------------------------------------------------------------------ #
    # Execution                                                            #
    # ------------------------------------------------------------------ #

    async def execute_worker(self, handler: Handler, job: Job) -> Job | None:
        """
        Run `handler(job.params, job)` and record the outcome.

        Returns the COMPLETED or FAILED record, or None if the outcome could
        not be recorded. Handler exceptions never propagate.
        """
        with structlog.contextvars.bound_contextvars(job_id=job.id, job_name=job.name):
            logger.debug("job_started")
            try:
                result = await _invoke(handler, job)
            except Exception as exc:
                logger.info("job_failed", error=str(exc) or type(exc).__name__)
                return await self._record(self.queue.fail(job, exc), Event.FAILED)

            logger.debug("job_completed")
            return await self._record(self.queue.complete(job, result), Event.COMPLETED)

    async def _record(self, outcome: Awaitable[Job], event: Event) -> Job | None:
        try:
            job = await outcome
        except Exception as exc:
            logger.exception("outcome_recording_failed", outcome=event.value)
            self._events.emit(Event.ERROR, exc)
            return None
        self._events.emit(event, job)
        return job

    # ------------------------------------------------------------------ #
    # Internal machinery                                                   #
    # ------------------------------------------------------------------ #

    async def _poll_loop(
        self,
        stop: asyncio.Event,
        options: DispatcherOptions,
        workers: dict[str, Handler],
    ) -> None:
        slots: asyncio.Semaphore | None = None
        if options.parallel and options.max_concurrency is not None:
            slots = asyncio.Semaphore(options.max_concurrency)
        names = frozenset(workers)

        while not stop.is_set():
            if slots is not None:
                await slots.acquire()
                if stop.is_set():
                    slots.release()
                    break

            try:
                job = await self.queue.dequeue(names)
            except Exception as exc:
                if slots is not None:
                    slots.release()
                logger.exception("poll_failed")
                self._events.emit(Event.ERROR, exc)
                await _wait_for_stop(stop, options.interval)
                continue

            if job is None:
                if slots is not None:
                    slots.release()
                self._events.emit(Event.EMPTY)
                await _wait_for_stop(stop, options.interval)
                continue

            handler = workers[job.name]
            if not options.parallel:
                await self.execute_worker(handler, job)
                continue

            task = asyncio.create_task(
                self.execute_worker(handler, job), name=f"microq-job-{job.id}"
            )
            self._inflight.add(task)
            task.add_done_callback(functools.partial(self._job_done, slots))
            # Yield one tick so the new task starts before the next claim.
            await asyncio.sleep(0)

        logger.info("dispatcher_stopped")

    def _job_done(
        self,
        slots: asyncio.Semaphore | None,
        task: asyncio.Task[Job | None],
    ) -> None:
        self._inflight.discard(task)
        if slots is not None:
            slots.release()


async def _invoke(handler: Handler, job: Job) -> Any:
    """Await coroutine handlers; run plain callables in a worker thread."""
    if inspect.iscoroutinefunction(handler):
        return await handler(job.params, job)
    result = await asyncio.to_thread(handler, job.params, job)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _wait_for_stop(stop: asyncio.Event, interval: timedelta) -> None:
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(stop.wait(), timeout=interval.total_seconds())


def _validate_workers(workers: Mapping[str, Handler]) -> dict[str, Handler]:
    if not isinstance(workers, Mapping) or not workers:
        raise WorkerRegistrationError(
            "workers must be a non-empty mapping of job name to handler"
        )
    for name, handler in workers.items():
        if not isinstance(name, str) or not name:
            raise WorkerRegistrationError(
                f"Worker name must be a non-empty string, got {name!r}"
            )
        if not callable(handler):
            raise WorkerRegistrationError(f"Handler for {name!r} is not callable")
    return dict(workers)
