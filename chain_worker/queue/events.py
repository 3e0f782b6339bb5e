"""Publish/subscribe surface for job lifecycle transitions.

Notification, metrics and persistence collaborators subscribe here. Handlers
run synchronously, in registration order, right after the engine has
committed the transition. A failing handler is logged and skipped.
"""

import inspect
import logging
from typing import Any, Callable

from .models import Job

logger = logging.getLogger(__name__)

EVENT_ENQUEUED = "enqueued"
EVENT_COMPLETED = "completed"
EVENT_RETRY = "retry"
EVENT_DEAD = "dead"

EVENT_NAMES = (EVENT_ENQUEUED, EVENT_COMPLETED, EVENT_RETRY, EVENT_DEAD)

EventHandler = Callable[[Job], Any]


class EventSink:
    """Ordered handler lists per lifecycle event."""

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = {name: [] for name in EVENT_NAMES}
        self.error_count = 0

    def _check_name(self, event: str) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown event '{event}', expected one of {', '.join(EVENT_NAMES)}")

    def on(self, event: str, handler: EventHandler) -> None:
        """Subscribe ``handler`` to ``event``. Handlers must be plain callables."""
        self._check_name(event)
        if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(getattr(handler, "__call__", None)):
            raise TypeError(f"Handler for '{event}' must be synchronous, got coroutine function {handler!r}")
        self._handlers[event].append(handler)

    def off(self, event: str, handler: EventHandler) -> bool:
        """Unsubscribe. Returns False if the handler was not registered."""
        self._check_name(event)
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            return False
        return True

    def handler_count(self, event: str) -> int:
        self._check_name(event)
        return len(self._handlers[event])

    def emit(self, event: str, job: Job) -> None:
        """
        Deliver a frozen snapshot of ``job`` to every handler of ``event``.

        Handler exceptions are caught per handler and reported through the
        module logger; they never reach the engine.
        """
        self._check_name(event)
        snapshot = job.snapshot()
        for handler in list(self._handlers[event]):
            try:
                result = handler(snapshot)
                if inspect.isawaitable(result):
                    if inspect.iscoroutine(result):
                        result.close()
                    raise TypeError("handler returned an awaitable, which is never awaited")
            except Exception:
                self.error_count += 1
                logger.exception(
                    f"Event handler {getattr(handler, '__qualname__', handler)!r} failed for '{event}'",
                    extra={"job_id": job.id, "event": event},
                )
