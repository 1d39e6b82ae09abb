"""Tests for EventBus and the Notifier protocol."""
from __future__ import annotations

import logging

from leaky_bucket.events import (
    Event,
    EventBus,
    EventTypes,
    Notifier,
    NullNotifier,
)


class TestEventBus:
    def test_notify_calls_subscribers(self) -> None:
        bus = EventBus()
        received: list[Event] = []
        bus.subscribe(EventTypes.IDLE, received.append)
        bus.notify(EventTypes.IDLE, {"queue_length": 0})
        assert len(received) == 1
        assert received[0].type == EventTypes.IDLE
        assert received[0].payload == {"queue_length": 0}
        assert received[0].ts

    def test_notify_without_subscribers_is_noop(self) -> None:
        bus = EventBus()
        bus.notify(EventTypes.IDLE, {})
        assert not bus.has_subscribers(EventTypes.IDLE)

    def test_once_handler_fires_once(self) -> None:
        bus = EventBus()
        received: list[Event] = []
        bus.once(EventTypes.IDLE_TIMEOUT, received.append)
        bus.notify(EventTypes.IDLE_TIMEOUT, {})
        bus.notify(EventTypes.IDLE_TIMEOUT, {})
        assert len(received) == 1
        assert not bus.has_subscribers(EventTypes.IDLE_TIMEOUT)

    def test_unsubscribe_handler(self) -> None:
        bus = EventBus()
        received: list[Event] = []
        bus.subscribe(EventTypes.IDLE, received.append)
        bus.unsubscribe(EventTypes.IDLE, received.append)
        bus.notify(EventTypes.IDLE, {})
        assert received == []

    def test_unsubscribe_all_handlers_for_type(self) -> None:
        bus = EventBus()
        bus.subscribe(EventTypes.IDLE, lambda e: None)
        bus.subscribe(EventTypes.IDLE, lambda e: None)
        bus.unsubscribe(EventTypes.IDLE)
        assert not bus.has_subscribers(EventTypes.IDLE)

    def test_failing_handler_does_not_stop_others(self, caplog) -> None:
        bus = EventBus()
        received: list[Event] = []

        def _boom(event: Event) -> None:
            raise RuntimeError("handler failure")

        bus.subscribe(EventTypes.IDLE, _boom)
        bus.subscribe(EventTypes.IDLE, received.append)
        with caplog.at_level(logging.WARNING, logger="leaky_bucket.events"):
            bus.notify(EventTypes.IDLE, {})
        assert len(received) == 1
        assert "handler" in caplog.text

    def test_payload_is_copied(self) -> None:
        bus = EventBus()
        received: list[Event] = []
        bus.subscribe(EventTypes.IDLE, received.append)
        payload = {"cost": 1}
        bus.notify(EventTypes.IDLE, payload)
        payload["cost"] = 2
        assert received[0].payload["cost"] == 1


class TestNotifierProtocol:
    def test_event_bus_is_notifier(self) -> None:
        assert isinstance(EventBus(), Notifier)

    def test_null_notifier_is_notifier(self) -> None:
        assert isinstance(NullNotifier(), Notifier)
        NullNotifier().notify(EventTypes.IDLE, {})

    def test_custom_notifier(self) -> None:
        class Recorder:
            def __init__(self) -> None:
                self.calls: list[tuple[str, dict]] = []

            def notify(self, event_type: str, payload: dict) -> None:
                self.calls.append((event_type, payload))

        assert isinstance(Recorder(), Notifier)
