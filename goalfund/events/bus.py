"""
In-process event bus.

The engine publishes typed events after successful mutations; presentation
layers and internal caches subscribe by event type. A failing handler is
logged and never affects the publisher or the other handlers.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AllocationChanged:
    """Allocations of an asset changed for the given goals."""
    asset_id: str
    goal_ids: tuple[str, ...]


@dataclass(frozen=True)
class PlanRecalculated:
    """Monthly plans of the given goals were recalculated."""
    goal_ids: tuple[str, ...]
    month_label: Optional[str] = None


@dataclass(frozen=True)
class ExecutionStateChanged:
    """An execution record changed status."""
    record_id: str
    month_label: str
    from_status: str
    to_status: str


@dataclass(frozen=True)
class ContributionRecorded:
    """A contribution was stored, possibly linked to an execution record."""
    contribution_id: str
    goal_id: str
    execution_record_id: Optional[str] = None


Handler = Callable[[object], None]


class EventBus:
    """Synchronous publish/subscribe dispatcher keyed by event class."""

    def __init__(self) -> None:
        self.logger = logger
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: type, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for an event type.

        Returns:
            Callable that removes the subscription
        """
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[event_type]:
                    self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: object) -> int:
        """
        Deliver an event to every handler subscribed to its type.

        Returns:
            Number of handlers that completed without raising
        """
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                self.logger.error(
                    "Event handler failed",
                    event_type=type(event).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True
                )

        self.logger.debug(
            "Event published",
            event_type=type(event).__name__,
            handlers=len(handlers),
            delivered=delivered
        )
        return delivered
