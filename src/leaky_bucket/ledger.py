"""Capacity ledger -- in-memory accounting of available and queued cost."""
from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


class CapacityLedger:
    """Tracks how many cost-units are available and refills them over time.

    The ledger can burst up to *capacity* units. Once units are spent they
    come back at ``capacity / interval`` units per second. *timeout* bounds
    how far ahead the ledger may promise capacity: at most
    ``(timeout / interval) * capacity`` units can be outstanding.

    Not thread-safe. The owning bucket mutates it from one event loop.

    Args:
        capacity: Burstable cost-units per interval.
        interval: Seconds over which *capacity* is the sustainable rate.
        timeout: Maximum seconds a request may wait. Defaults to *interval*.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        capacity: float,
        interval: float,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout is None:
            timeout = interval
        _require_positive("capacity", capacity)
        _require_positive("interval", interval)
        _require_positive("timeout", timeout)

        self._clock = clock
        self._capacity = float(capacity)
        self._interval = float(interval)
        self._timeout = float(timeout)
        self._max_capacity = 0.0
        self._refill_rate = 0.0
        self._recompute()

        # Units that can be granted right now
        self.current_capacity: float = self._capacity
        # Cost of all queued, not yet granted requests
        self.total_cost: float = 0.0
        # None while fully recharged
        self.last_refill: float | None = None

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def refill_rate(self) -> float:
        """Cost-units regenerated per second."""
        return self._refill_rate

    @property
    def max_capacity(self) -> float:
        """Ceiling of cost-units outstanding within the timeout horizon."""
        return self._max_capacity

    @property
    def is_full(self) -> bool:
        return self.current_capacity >= self._capacity

    def set_capacity(self, capacity: float) -> None:
        _require_positive("capacity", capacity)
        # Capacity earned so far accrues at the old rate.
        self.refill()
        self._capacity = float(capacity)
        if self.current_capacity > self._capacity:
            self.current_capacity = self._capacity
            self.last_refill = None
        elif self.current_capacity < self._capacity and self.last_refill is None:
            self.last_refill = self._clock()
        self._recompute()

    def set_interval(self, interval: float) -> None:
        _require_positive("interval", interval)
        self.refill()
        self._interval = float(interval)
        self._recompute()

    def set_timeout(self, timeout: float) -> None:
        _require_positive("timeout", timeout)
        self._timeout = float(timeout)
        self._recompute()

    def _recompute(self) -> None:
        self._max_capacity = (self._timeout / self._interval) * self._capacity
        self._refill_rate = self._capacity / self._interval
        logger.debug(
            "ledger max_capacity=%s refill_rate=%s",
            self._max_capacity,
            self._refill_rate,
        )

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def refill(self) -> bool:
        """Add the capacity regenerated since the last refill.

        Returns:
            True if the ledger is fully recharged afterwards.
        """
        if self.current_capacity >= self._capacity:
            return True

        now = self._clock()
        if self.last_refill is None:
            # Capacity was lowered externally; start leaking from now
            self.last_refill = now
            return False

        amount = (now - self.last_refill) * self._refill_rate
        self.current_capacity += amount

        if self.current_capacity >= self._capacity:
            self.current_capacity = self._capacity
            self.last_refill = None
            logger.debug("ledger fully recharged")
            return True

        self.last_refill = now
        return False

    def reserve(self, cost: float) -> None:
        """Account for a newly queued request."""
        self.total_cost += cost

    def release(self, cost: float) -> None:
        """Remove a queued request without charging it (e.g. dropped)."""
        self.total_cost = max(0.0, self.total_cost - cost)

    def charge(self, cost: float) -> None:
        """Spend *cost* units.

        Used both when a queued request is granted and for post-hoc
        payments whose cost is only known after the work ran. Both
        balances are floored at zero.
        """
        self.current_capacity = max(0.0, self.current_capacity - cost)
        self.total_cost = max(0.0, self.total_cost - cost)
        if self.last_refill is None and self.current_capacity < self._capacity:
            self.last_refill = self._clock()
        logger.debug(
            "ledger charged %s, current_capacity=%s total_cost=%s",
            cost,
            self.current_capacity,
            self.total_cost,
        )

    def drain(self) -> None:
        """Empty the available capacity so nothing can burst right now."""
        logger.debug("ledger drained %s units", self.current_capacity)
        self.current_capacity = 0.0
        self.last_refill = self._clock()

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def projected_max_available(self) -> float:
        """Units this ledger could still grant within the timeout horizon."""
        self.refill()
        return self._max_capacity - (self._capacity - self.current_capacity)

    def time_until(self, cost: float) -> float:
        """Seconds until *cost* units are available.

        Rounded up to whole milliseconds so a timer armed for this delay
        never wakes before the units exist.
        """
        deficit = cost - self.current_capacity
        if deficit <= 0:
            return 0.0
        return math.ceil(deficit / self._refill_rate * 1000) / 1000

    def time_until_full(self) -> float:
        return self.time_until(self._capacity)

    def snapshot(self) -> dict[str, Any]:
        """Return a dict suitable for event payloads."""
        return {
            "capacity": self._capacity,
            "interval": self._interval,
            "timeout": self._timeout,
            "max_capacity": self._max_capacity,
            "refill_rate": self._refill_rate,
            "current_capacity": self.current_capacity,
            "total_cost": self.total_cost,
        }


def _require_positive(name: str, value: float | None) -> None:
    if value is None or value <= 0:
        raise ValueError(f"{name} must be > 0")
