"""Tests for AdmissionQueue and OverflowProjector."""
from __future__ import annotations

import asyncio

import pytest

from leaky_bucket.errors import CapacityExceededError
from leaky_bucket.ledger import CapacityLedger
from leaky_bucket.projector import OverflowProjector
from leaky_bucket.queue import AdmissionQueue, QueueEntry


def _entry(loop: asyncio.AbstractEventLoop, cost: float, is_pause: bool = False) -> QueueEntry:
    return QueueEntry(cost=cost, future=loop.create_future(), is_pause=is_pause)


@pytest.fixture
def loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


def _drained_ledger(capacity: float = 60, interval: float = 60, timeout: float = 70) -> CapacityLedger:
    now = [1000.0]
    ledger = CapacityLedger(capacity, interval, timeout, clock=lambda: now[0])
    ledger.charge(capacity)
    return ledger


# ---------------------------------------------------------------------------
# AdmissionQueue
# ---------------------------------------------------------------------------


class TestAdmissionQueue:
    def test_fifo_with_head_insertion(self, loop) -> None:
        queue = AdmissionQueue()
        a, b, p = _entry(loop, 1), _entry(loop, 2), _entry(loop, 3, is_pause=True)
        queue.append(a)
        queue.append(b)
        queue.appendleft(p)
        assert list(queue) == [p, a, b]
        assert queue.peek() is p
        assert queue.popleft() is p
        assert len(queue) == 2
        assert [e.cost for e in queue] == [1, 2]

    def test_empty_queue(self) -> None:
        queue = AdmissionQueue()
        assert queue.is_empty
        assert queue.peek() is None

    def test_remove_from_keeps_matching_entries_in_order(self, loop) -> None:
        queue = AdmissionQueue()
        entries = [_entry(loop, 1), _entry(loop, 2), _entry(loop, 3, is_pause=True), _entry(loop, 4)]
        for e in entries:
            queue.append(e)
        removed = queue.remove_from(1, keep=lambda e: e.is_pause)
        assert removed == [entries[1], entries[3]]
        assert list(queue) == [entries[0], entries[2]]

    def test_clear_returns_entries(self, loop) -> None:
        queue = AdmissionQueue()
        e = _entry(loop, 1)
        queue.append(e)
        assert queue.clear() == [e]
        assert queue.is_empty


# ---------------------------------------------------------------------------
# OverflowProjector.admissible
# ---------------------------------------------------------------------------


class TestAdmissible:
    def test_within_max_capacity(self) -> None:
        ledger = CapacityLedger(100, 60, 300)
        projector = OverflowProjector(ledger)
        assert projector.admissible(500) is True

    def test_overflow_rejected(self) -> None:
        ledger = CapacityLedger(100, 60, 300)
        projector = OverflowProjector(ledger)
        ledger.reserve(500)
        assert projector.admissible(1) is False

    def test_consumed_capacity_counts(self) -> None:
        ledger = _drained_ledger()
        projector = OverflowProjector(ledger)
        assert projector.admissible(10) is True
        assert projector.admissible(10.5) is False


# ---------------------------------------------------------------------------
# OverflowProjector.prune_overflow
# ---------------------------------------------------------------------------


class TestPruneOverflow:
    def test_pause_displaces_tail(self, loop) -> None:
        ledger = _drained_ledger()
        projector = OverflowProjector(ledger)
        queue = AdmissionQueue()
        first, second = _entry(loop, 5), _entry(loop, 5)
        for e in (first, second):
            ledger.reserve(e.cost)
            queue.append(e)

        pause = _entry(loop, 1, is_pause=True)
        ledger.reserve(1)
        queue.appendleft(pause)

        dropped = projector.prune_overflow(queue)

        assert dropped == [second]
        assert list(queue) == [pause, first]
        assert ledger.total_cost == pytest.approx(6)
        err = second.future.exception()
        assert isinstance(err, CapacityExceededError)
        assert err.reason == "displaced"
        assert err.cost == 5
        assert err.max_capacity == pytest.approx(10)
        assert not first.future.done()

    def test_pause_entries_are_never_dropped(self, loop) -> None:
        ledger = _drained_ledger()
        projector = OverflowProjector(ledger)
        queue = AdmissionQueue()
        head = _entry(loop, 8, is_pause=True)
        a = _entry(loop, 5)
        late_pause = _entry(loop, 3, is_pause=True)
        b = _entry(loop, 1)
        for e in (head, a, late_pause, b):
            ledger.reserve(e.cost)
            queue.append(e)

        dropped = projector.prune_overflow(queue)

        assert dropped == [a, b]
        assert list(queue) == [head, late_pause]
        assert ledger.total_cost == pytest.approx(11)
        assert not late_pause.future.done()
        assert isinstance(a.future.exception(), CapacityExceededError)
        assert isinstance(b.future.exception(), CapacityExceededError)

    def test_nothing_dropped_when_within_capacity(self, loop) -> None:
        ledger = _drained_ledger()
        projector = OverflowProjector(ledger)
        queue = AdmissionQueue()
        for cost in (1, 4, 5):
            ledger.reserve(cost)
            queue.append(_entry(loop, cost))
        assert projector.prune_overflow(queue) == []
        assert len(queue) == 3
