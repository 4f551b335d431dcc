"""Event bus infrastructure for run lifecycle events.

Provides an asynchronous pub-sub bus for the orchestrator's lifecycle
events plus an in-memory event store for replay and debugging.  The bus
dispatches ``RunEvent`` instances to registered observers, catching and
logging errors so that a failing observer never breaks a research run.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from product_research.domain.events import RunEvent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------
EventHandler = Callable[[RunEvent], Any]  # sync or async callable


# ===================================================================== #
#  Asynchronous Event Bus                                                #
# ===================================================================== #

class AsyncEventBus:
    """Async event bus for run lifecycle events.

    Handlers may be plain callables or coroutine functions; coroutines are
    awaited in place, so observers see events in publish order.

    Usage::

        bus = AsyncEventBus()
        bus.subscribe(PhaseCompleted, on_phase_completed)
        await bus.publish(PhaseCompleted(run_id="r1", phase="load_context"))
    """

    def __init__(self) -> None:
        self._handlers: dict[type[RunEvent], list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []

    # -- subscription -------------------------------------------------------

    def subscribe(self, event_type: type[RunEvent], handler: EventHandler) -> None:
        """Register *handler* for *event_type* (exact type match)."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register *handler* for every event type."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event_type: type[RunEvent], handler: EventHandler) -> bool:
        """Remove *handler* from *event_type*. Returns ``True`` if found."""
        handlers = self._handlers.get(event_type, [])
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    # -- publishing ---------------------------------------------------------

    async def publish(self, event: RunEvent) -> None:
        """Publish *event* to global handlers first, then typed handlers."""
        handlers = list(self._global_handlers) + list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception:
                logger.exception(
                    "Error in handler %r for %s", handler, type(event).__name__
                )

    def handler_count(self, event_type: type[RunEvent] | None = None) -> int:
        """Return the number of handlers registered."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        total = sum(len(hs) for hs in self._handlers.values())
        return total + len(self._global_handlers)


# ===================================================================== #
#  Event Store                                                           #
# ===================================================================== #

class EventStore:
    """In-memory append-only event store.

    Wire it to a bus with ``bus.subscribe_all(store.append)`` to keep a
    replayable log of every lifecycle event.
    """

    def __init__(self, max_size: int = 0) -> None:
        self._events: list[RunEvent] = []
        self._max_size = max_size
        self._lock = threading.Lock()

    def append(self, event: RunEvent) -> None:
        """Append a single event, evicting the oldest past *max_size*."""
        with self._lock:
            self._events.append(event)
            if self._max_size > 0 and len(self._events) > self._max_size:
                self._events = self._events[-self._max_size:]

    def query(
        self,
        event_type: type[RunEvent] | None = None,
        run_id: str | None = None,
        since: float | None = None,
    ) -> list[RunEvent]:
        """Return events matching the optional filters, oldest first."""
        with self._lock:
            result = list(self._events)
        if event_type is not None:
            result = [e for e in result if isinstance(e, event_type)]
        if run_id is not None:
            result = [e for e in result if e.run_id == run_id]
        if since is not None:
            result = [e for e in result if e.timestamp >= since]
        return result

    @property
    def latest(self) -> RunEvent | None:
        with self._lock:
            return self._events[-1] if self._events else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
