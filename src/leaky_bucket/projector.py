"""Overflow projector -- decides whether queued demand fits the timeout horizon."""
from __future__ import annotations

import logging

from leaky_bucket.errors import CapacityExceededError
from leaky_bucket.ledger import CapacityLedger
from leaky_bucket.queue import AdmissionQueue, QueueEntry

logger = logging.getLogger(__name__)


class OverflowProjector:
    """Checks new and reordered demand against the ledger's projected maximum."""

    def __init__(self, ledger: CapacityLedger) -> None:
        self._ledger = ledger

    def admissible(self, cost: float) -> bool:
        """Return False if appending *cost* would overflow the bucket."""
        return self._ledger.total_cost + cost <= self._ledger.projected_max_available()

    def prune_overflow(self, queue: AdmissionQueue) -> list[QueueEntry]:
        """Drop queued requests that can no longer be granted in time.

        Called after an entry was inserted at the head of *queue*. The first
        entry whose cumulative cost exceeds the projected maximum marks the
        cut; every non-pause entry from there on is removed, its future
        failed and its cost released.

        Returns:
            The dropped entries, in queue order.
        """
        max_available = self._ledger.projected_max_available()

        cut: int | None = None
        cumulative = 0.0
        for index, entry in enumerate(queue):
            cumulative += entry.cost
            if cumulative > max_available:
                cut = index
                break

        if cut is None:
            return []

        dropped = queue.remove_from(cut, keep=lambda e: e.is_pause)
        for entry in dropped:
            logger.warning(
                "Rejecting item with a cost of %s because an item was added in front of it",
                entry.cost,
            )
            self._ledger.release(entry.cost)
            if not entry.future.done():
                entry.future.set_exception(CapacityExceededError(
                    max_available,
                    entry.cost,
                    total_cost=self._ledger.total_cost,
                    reason="displaced",
                ))
        return dropped
