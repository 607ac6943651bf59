"""
EventEmitter — lifecycle notifications from the Dispatcher.

Events
------
  empty      ()          a poll found no eligible job
  completed  (job)       a handler returned; job is the COMPLETED record
  failed     (job)       a handler raised; job is the FAILED record
  error      (exc)       the poll loop hit a store failure and carried on

Listeners are plain callables or coroutine functions. Coroutine listeners
are scheduled as tasks on the running loop; drain() waits for them.
A listener that raises is logged and never breaks the emitter.
"""
from __future__ import annotations

import asyncio
import dataclasses
import inspect
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Listener = Callable[..., Any]


class Event(str, Enum):
    EMPTY = "empty"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


@dataclasses.dataclass
class EventEmitter:
    _listeners: dict[Event, list[Listener]] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _tasks: set[asyncio.Task[Any]] = dataclasses.field(
        default_factory=set, init=False, repr=False
    )

    def on(self, event: Event | str, listener: Listener) -> Listener:
        """Subscribe `listener` to `event`. Returns the listener."""
        self._listeners.setdefault(Event(event), []).append(listener)
        return listener

    def off(self, event: Event | str, listener: Listener) -> None:
        """Unsubscribe `listener`; unknown listeners are ignored."""
        listeners = self._listeners.get(Event(event), [])
        if listener in listeners:
            listeners.remove(listener)

    def listeners(self, event: Event | str) -> list[Listener]:
        return list(self._listeners.get(Event(event), []))

    def emit(self, event: Event | str, *args: Any) -> None:
        event = Event(event)
        for listener in self.listeners(event):
            try:
                outcome = listener(*args)
            except Exception:
                logger.exception("event_listener_failed", event_name=event.value)
                continue
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._tasks.add(task)
                task.add_done_callback(self._listener_done)

    async def drain(self) -> None:
        """Wait for every coroutine listener scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _listener_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("event_listener_failed", exc_info=exc)
