"""OpenTelemetry integration for bucket events.

Only structured metadata (event type, costs, capacity figures) is exported.
Tracer setup stays with the application; this module records bucket events
on whatever span is current.

Usage:
    from leaky_bucket.otel import instrument_bucket
    instrument_bucket(bucket)

Events raised from bucket timers (``idle``, ``idle_timeout``) fire outside
any request span. Pass a tracer to record those in a span of their own.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

from leaky_bucket.events import EventTypes

if TYPE_CHECKING:
    from leaky_bucket.bucket import LeakyBucket
    from leaky_bucket.events import Event

logger = logging.getLogger(__name__)

# Payload keys exported as span event attributes
_EXPORTED_KEYS = (
    "cost",
    "max_available",
    "capacity",
    "current_capacity",
    "total_cost",
    "queue_length",
)

_ALL_EVENT_TYPES = (
    EventTypes.IDLE,
    EventTypes.IDLE_TIMEOUT,
    EventTypes.ADMIT_REJECTED,
    EventTypes.QUEUE_DROPPED,
    EventTypes.PAUSED,
    EventTypes.ENDED,
)


def _event_attributes(event: Event) -> dict[str, Any]:
    attributes: dict[str, Any] = {"leaky_bucket.event_type": event.type}
    for key in _EXPORTED_KEYS:
        value = event.payload.get(key)
        if isinstance(value, (int, float)):
            attributes[f"leaky_bucket.{key}"] = value
    return attributes


def emit_bucket_event(event: Event, tracer: Any = None) -> bool:
    """Attach a bucket event to the current span.

    With no recording span, the event is dropped unless *tracer* is given,
    in which case it is recorded in a short span named after the event.
    Returns True if the event was recorded.
    """
    try:
        from opentelemetry import trace
    except ImportError:
        logger.debug("opentelemetry-api not installed; dropping %s", event.type)
        return False

    name = f"leaky_bucket.{event.type}"
    try:
        current_span = trace.get_current_span()
        if current_span.is_recording():
            current_span.add_event(name=name, attributes=_event_attributes(event))
            return True
        if tracer is None:
            return False
        with tracer.start_as_current_span(name) as span:
            span.add_event(name=name, attributes=_event_attributes(event))
        return True
    except Exception as exc:
        logger.debug("OTel emit_bucket_event failed: %s", exc)
        return False


class OTelEventHandler:
    """Event handler forwarding bucket events to OTel."""

    def __init__(self, tracer: Any = None) -> None:
        self._tracer = tracer

    def __call__(self, event: Event) -> None:
        emit_bucket_event(event, self._tracer)


def instrument_bucket(
    bucket: LeakyBucket,
    event_types: Iterable[str] | None = None,
    tracer: Any = None,
) -> OTelEventHandler:
    """Subscribe an :class:`OTelEventHandler` to *bucket*.

    All bucket event types are forwarded unless *event_types* narrows them.
    Returns the handler so it can be passed to ``bucket.unsubscribe``.
    """
    handler = OTelEventHandler(tracer)
    for event_type in event_types if event_types is not None else _ALL_EVENT_TYPES:
        bucket.subscribe(event_type, handler)
    return handler
