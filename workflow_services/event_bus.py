"""
EventBus -- synchronous in-process publish/subscribe.

Carries opaque ``{type, data}`` envelopes between the host's lifecycle
hooks, the trigger bridge, the trigger matcher and ``WorkflowService``.
Delivery is synchronous and in subscription order.  A handler that raises
is logged and skipped; the remaining handlers still run and ``publish``
never raises because of a subscriber.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from workflow_kernel.logging_config import get_logger

logger = get_logger("services.event_bus")

WILDCARD = "*"


@dataclass(frozen=True)
class Event:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous event bus.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe("workflow.completed", on_completed)
        bus.publish("workflow.completed", {"instance_id": "..."})
        unsubscribe()

    ``subscribe(WILDCARD, handler)`` receives every event.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type``; returns an unsubscribe callable."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def handler_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, ()))

    def publish(self, event_type: str, data: Mapping[str, Any] | None = None) -> Event:
        """Deliver an event to every matching handler and return it."""
        event = Event(type=event_type, data=dict(data or {}))
        with self._lock:
            handlers = [
                *self._handlers.get(event_type, ()),
                *(self._handlers.get(WILDCARD, ()) if event_type != WILDCARD else ()),
            ]

        logger.debug(
            "event_published",
            extra={"event_type": event_type, "handler_count": len(handlers)},
        )
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event_type,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )
        return event
