"""Bucket event schema, types, and EventBus."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class EventTypes:
    """String constants for all event types."""

    # Queue transitioned from non-empty to empty
    IDLE = "idle"
    # Bucket stayed full and idle for the configured idle timeout
    IDLE_TIMEOUT = "idle_timeout"

    # Admission
    ADMIT_REJECTED = "admit.rejected"
    QUEUE_DROPPED = "queue.dropped"

    # Lifecycle
    PAUSED = "paused"
    ENDED = "ended"


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Event:
    """Structured event delivered to subscribers."""

    type: str = ""
    ts: str = field(default_factory=now_iso)
    payload: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[Event], Any]


@runtime_checkable
class Notifier(Protocol):
    """Capability a bucket needs to publish events."""

    def notify(self, event_type: str, payload: dict[str, Any]) -> None: ...


class EventBus:
    """Dispatches named events to subscribed handlers."""

    def __init__(self) -> None:
        # Handler -> fire only once
        self._handlers: dict[str, dict[EventHandler, bool]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, {})[handler] = False

    def once(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe *handler* for the next *event_type* event only."""
        self._handlers.setdefault(event_type, {})[handler] = True

    def unsubscribe(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Remove *handler*, or every handler for *event_type* when omitted."""
        if handler is None:
            self._handlers.pop(event_type, None)
            return
        handlers = self._handlers.get(event_type)
        if handlers is not None:
            handlers.pop(handler, None)
            if not handlers:
                del self._handlers[event_type]

    def has_subscribers(self, event_type: str) -> bool:
        return bool(self._handlers.get(event_type))

    def notify(self, event_type: str, payload: dict[str, Any]) -> None:
        """Invoke all handlers for *event_type*. Handler errors are logged, not raised."""
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        event = Event(type=event_type, payload=dict(payload))
        for handler, once in list(handlers.items()):
            if once:
                self.unsubscribe(event_type, handler)
            try:
                handler(event)
            except Exception:
                logger.warning(
                    "EventBus: handler %r failed for event %s",
                    handler,
                    event_type,
                    exc_info=True,
                )


class NullNotifier:
    """Notifier that discards all events."""

    def notify(self, event_type: str, payload: dict[str, Any]) -> None:
        pass
