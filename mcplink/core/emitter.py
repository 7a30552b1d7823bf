"""Typed publish/subscribe event bus.

Handlers are called synchronously, in registration order. A handler that
raises is logged and the remaining handlers still run. Handlers may be
coroutine functions; their coroutines are scheduled on the running loop and
failures are logged the same way.

Example:
    events = EventEmitter()
    events.on("client:connected", lambda e: print(e.uri))
    events.emit("client:connected", ClientConnected(uri="ws://...", type=...))
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

P = TypeVar("P")

Handler = Callable[[Any], "Awaitable[None] | None"]

DEFAULT_MAX_LISTENERS: int = 100


class EventEmitter(Generic[P]):
    """Event name -> ordered handler list.

    The type parameter documents the payload base type carried on the bus
    (e.g. ``EventEmitter[McpEvent]``); handlers receive the payload as-is.

    Attributes:
        max_listeners: Soft limit per event; exceeding it logs a warning.
    """

    def __init__(self, max_listeners: int = DEFAULT_MAX_LISTENERS) -> None:
        self._listeners: dict[str, list[Handler]] = {}
        self.max_listeners = max_listeners
        self._pending: set[asyncio.Task[Any]] = set()

    def on(self, event: str, handler: Handler) -> None:
        """Register a handler. Registering the same handler twice is a no-op."""
        handlers = self._listeners.setdefault(event, [])
        if handler in handlers:
            return
        if self.max_listeners and len(handlers) >= self.max_listeners:
            logger.warning(
                "Maximum listeners (%d) exceeded for event '%s'",
                self.max_listeners,
                event,
            )
        handlers.append(handler)

    def off(self, event: str, handler: Handler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        handlers = self._listeners.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._listeners[event]

    def once(self, event: str, handler: Handler) -> None:
        """Register a handler that removes itself after the first call."""

        def wrapper(payload: Any) -> Awaitable[None] | None:
            self.off(event, wrapper)
            return handler(payload)

        self.on(event, wrapper)

    def emit(self, event: str, payload: P | Any = None) -> bool:
        """Call every handler for ``event``.

        Returns:
            True if at least one handler was registered.
        """
        handlers = self._listeners.get(event)
        if not handlers:
            return False

        # Snapshot: handlers may call on()/off() while we iterate
        for handler in list(handlers):
            try:
                result = handler(payload)
            except Exception:
                logger.exception("Error in listener for event '%s'", event)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)
        return True

    def _schedule(self, event: str, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop; close the coroutine so it is not left un-awaited
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("Async listener for '%s' skipped: no running event loop", event)
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "Error in async listener for event '%s'", event, exc_info=exc
                )

        task.add_done_callback(_done)

    def remove_all_listeners(self, event: str | None = None) -> None:
        """Drop handlers for one event, or for all events when ``event`` is None."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def event_names(self) -> list[str]:
        return list(self._listeners)
