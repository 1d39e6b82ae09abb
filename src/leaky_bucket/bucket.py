"""LeakyBucket -- cost-based admission control for asyncio programs.

The bucket can burst up to ``capacity`` cost-units. Once those are spent,
requests are queued and granted as capacity leaks back at
``capacity / interval`` units per second. A request that could not be
granted within ``timeout`` seconds is rejected up front.

Example: throttle 100 unit-cost actions per minute and reject anything that
would have to wait more than two minutes. At most 200 units can be
outstanding; 100 burst immediately, the rest are spread over the following
minute::

    bucket = LeakyBucket(capacity=100, interval=60, timeout=120)
    await bucket.throttle()
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from leaky_bucket.config import BucketConfig
from leaky_bucket.errors import BucketEndedError, CapacityExceededError
from leaky_bucket.events import EventBus, EventHandler, EventTypes, Notifier
from leaky_bucket.ledger import CapacityLedger
from leaky_bucket.projector import OverflowProjector
from leaky_bucket.queue import AdmissionQueue, QueueEntry

logger = logging.getLogger(__name__)

# Slack added to the refill-to-full timer so the ledger is full when it fires
_REFILL_TIMER_SLACK = 0.01


class LeakyBucket:
    """Cost-based admission controller.

    All methods must be called from the thread running the event loop.
    The bucket binds to the running loop when it is constructed inside one,
    or else on the first loop-bound operation (:meth:`throttle`, :meth:`pause`,
    :meth:`pay` or :meth:`is_empty`). Timers, including the idle-timeout
    watch, are armed from that point; before it nothing fires.

    Args:
        capacity: Burstable cost-units per *interval*.
        interval: Seconds over which *capacity* is the sustainable rate.
        timeout: Maximum seconds a request may wait. Defaults to *interval*.
        idle_timeout: If set, emit ``idle_timeout`` after the bucket has been
            full with an empty queue for this many seconds.
        initial_capacity: Units available at construction. Defaults to
            *capacity* (a full bucket).
        notifier: Receives bucket events. Defaults to a fresh
            :class:`~leaky_bucket.events.EventBus`.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        capacity: float = 60,
        interval: float = 60.0,
        timeout: float | None = None,
        *,
        idle_timeout: float | None = None,
        initial_capacity: float | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if idle_timeout is not None and idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        self._ledger = CapacityLedger(capacity, interval, timeout, clock=clock)
        self._projector = OverflowProjector(self._ledger)
        self._queue = AdmissionQueue()
        self._notifier: Notifier = notifier if notifier is not None else EventBus()
        self._idle_timeout = idle_timeout

        self._loop: asyncio.AbstractEventLoop | None = _running_loop()
        self._wake_timer: asyncio.TimerHandle | None = None
        # Bumped whenever the wake timer is armed or stopped; stale fires are ignored
        self._wake_generation = 0
        self._idle_timer: asyncio.TimerHandle | None = None
        self._refill_timer: asyncio.TimerHandle | None = None
        self._empty_future: asyncio.Future | None = None

        self._ticking = False
        self._tick_again = False
        self._ended = False

        if initial_capacity is not None:
            if not 0 <= initial_capacity <= capacity:
                raise ValueError("initial_capacity must be between 0 and capacity")
            self._ledger.charge(capacity - initial_capacity)

        self._refill()

    @classmethod
    def from_config(
        cls,
        config: BucketConfig,
        notifier: Notifier | None = None,
    ) -> LeakyBucket:
        return cls(
            config.capacity,
            config.interval,
            config.timeout,
            idle_timeout=config.idle_timeout,
            initial_capacity=config.initial_capacity,
            notifier=notifier,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def throttle(self, cost: float = 1) -> asyncio.Future:
        """Request permission to do work of *cost* units.

        The request is queued when this method is called, not when the
        returned future is awaited. The future resolves with ``None`` once
        the request is granted. It fails with :class:`CapacityExceededError`
        if a later pause displaces the request.

        If the cost of the work is unknown up front, throttle with an
        estimate and settle the difference with :meth:`pay`.

        Admission only compares *cost* with the projected maximum, so a
        *cost* above :attr:`capacity` can be admitted when the timeout allows
        it. Such a request is never granted, because the ledger never holds
        more than *capacity* units, and it blocks the requests queued behind
        it until :meth:`end`. Keep single costs at or below *capacity*.

        Raises:
            CapacityExceededError: The request cannot be granted within the
                timeout. It was not queued.
            BucketEndedError: The bucket has ended.
        """
        self._check_open("throttle")
        _require_cost(cost)

        self._refill()
        if not self._projector.admissible(cost):
            max_available = self._ledger.projected_max_available()
            total_cost = self._ledger.total_cost
            logger.warning(
                "Rejecting item because the bucket is over capacity! "
                "Current max capacity: %s, total cost of all queued items: %s, item cost: %s",
                max_available,
                total_cost,
                cost,
            )
            self._notify(EventTypes.ADMIT_REJECTED, cost=cost, max_available=max_available)
            raise CapacityExceededError(max_available, cost, total_cost=total_cost)

        return self._enqueue(cost)

    def pause(self, seconds: float = 1) -> asyncio.Future:
        """Hold back all queued work for *seconds*.

        Drains the available capacity, then puts a pause costing
        ``seconds * refill_rate`` at the head of the queue. Queued requests
        that can no longer be granted in time are dropped. The returned
        future resolves when the pause is over.
        """
        self._check_open("pause")
        _require_cost(seconds, "seconds")
        self._ledger.drain()
        logger.info("Pausing bucket for %s seconds", seconds)
        return self._pause(self._ledger.refill_rate * seconds)

    def pause_by_cost(self, cost: float) -> asyncio.Future:
        """Put a pause of *cost* units at the head of the queue."""
        self._check_open("pause_by_cost")
        _require_cost(cost)
        logger.info("Pausing bucket for %s cost", cost)
        return self._pause(cost)

    def pay(self, cost: float) -> None:
        """Spend *cost* units for work whose cost was known only afterwards."""
        self._check_open("pay")
        _require_cost(cost)
        logger.debug("Paying %s", cost)
        self._ledger.charge(cost)
        self._advance()

    def is_empty(self) -> asyncio.Future:
        """Return a future that resolves the next time the queue becomes empty.

        A bucket whose queue is already empty does not resolve the future
        until work has been queued and granted again.
        """
        self._check_open("is_empty")
        if self._empty_future is None or self._empty_future.done():
            self._empty_future = self._require_loop().create_future()
        return self._empty_future

    def end(self) -> None:
        """Stop all timers and clear the queue.

        Futures of requests still queued are neither resolved nor failed.
        Await :meth:`is_empty` first for a graceful shutdown.
        """
        if self._ended:
            return
        logger.warning("Ending bucket with %s queued items", len(self._queue))
        self._stop_wake_timer()
        self._stop_idle_timer()
        self._stop_refill_timer()
        for entry in self._queue.clear():
            self._ledger.release(entry.cost)
        self._ended = True
        self._notify(EventTypes.ENDED)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscription("subscribe")(event_type, handler)

    def once(self, event_type: str, handler: EventHandler) -> None:
        self._subscription("once")(event_type, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler | None = None) -> None:
        self._subscription("unsubscribe")(event_type, handler)

    # --- Settings ---

    def set_capacity(self, capacity: float) -> LeakyBucket:
        self._ledger.set_capacity(capacity)
        self._reschedule()
        return self

    def set_interval(self, interval: float) -> LeakyBucket:
        self._ledger.set_interval(interval)
        self._reschedule()
        return self

    def set_timeout(self, timeout: float) -> LeakyBucket:
        self._ledger.set_timeout(timeout)
        return self

    # --- Getters ---

    @property
    def capacity(self) -> float:
        return self._ledger.capacity

    @property
    def interval(self) -> float:
        return self._ledger.interval

    @property
    def timeout(self) -> float:
        return self._ledger.timeout

    @property
    def refill_rate(self) -> float:
        return self._ledger.refill_rate

    @property
    def max_capacity(self) -> float:
        return self._ledger.max_capacity

    @property
    def current_capacity(self) -> float:
        self._ledger.refill()
        return self._ledger.current_capacity

    @property
    def total_cost(self) -> float:
        return self._ledger.total_cost

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def idle_timeout(self) -> float | None:
        return self._idle_timeout

    @property
    def ended(self) -> bool:
        return self._ended

    def snapshot(self) -> dict[str, Any]:
        """Return a dict suitable for event payloads."""
        return {
            **self._ledger.snapshot(),
            "queue_length": len(self._queue),
            "ended": self._ended,
        }

    def __repr__(self) -> str:
        return (
            f"LeakyBucket(capacity={self.capacity}, interval={self.interval}, "
            f"timeout={self.timeout}, queued={len(self._queue)})"
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _enqueue(self, cost: float, at_head: bool = False, is_pause: bool = False) -> asyncio.Future:
        future = self._require_loop().create_future()
        entry = QueueEntry(cost=cost, future=future, is_pause=is_pause)
        self._ledger.reserve(cost)

        if at_head:
            self._queue.appendleft(entry)
            logger.debug("Added an item with the cost of %s to the start of the queue", cost)
            for dropped in self._projector.prune_overflow(self._queue):
                self._notify(EventTypes.QUEUE_DROPPED, cost=dropped.cost)
        else:
            self._queue.append(entry)
            logger.debug("Appended an item with the cost of %s to the queue", cost)

        self._advance()
        return future

    def _pause(self, cost: float) -> asyncio.Future:
        self._stop_wake_timer()
        self._notify(EventTypes.PAUSED, cost=cost)
        return self._enqueue(cost, at_head=True, is_pause=True)

    def _advance(self) -> None:
        """Grant what can be granted now, or arm the wake timer for the head."""
        if self._ticking:
            # Called from a subscriber during a tick; the outer tick loops again
            self._tick_again = True
            return
        self._ticking = True
        try:
            while True:
                self._tick_again = False
                self._tick()
                if not self._tick_again:
                    break
        finally:
            self._ticking = False

    def _tick(self) -> None:
        while self._wake_timer is None and not self._ended:
            entry = self._queue.peek()
            if entry is None:
                # Starts the idle-timeout watch once full
                self._refill()
                return

            self._stop_idle_timer()

            if entry.future.cancelled():
                self._queue.popleft()
                self._ledger.release(entry.cost)
                logger.debug("Skipping cancelled item with the cost of %s", entry.cost)
                if self._queue.is_empty:
                    self._on_drained()
                continue

            self._refill()
            if self._ledger.current_capacity >= entry.cost:
                self._queue.popleft()
                entry.future.set_result(None)
                self._ledger.charge(entry.cost)
                logger.debug("Resolved an item with the cost of %s", entry.cost)
                if self._queue.is_empty:
                    self._on_drained()
                continue

            delay = self._ledger.time_until(entry.cost)
            logger.info(
                "Waiting %.3fs for topping up %s capacity until the next item can be processed",
                delay,
                entry.cost - self._ledger.current_capacity,
            )
            self._arm_wake_timer(delay)
            return

    def _on_drained(self) -> None:
        future, self._empty_future = self._empty_future, None
        if future is not None and not future.done():
            future.set_result(None)
        self._notify(EventTypes.IDLE)

    def _reschedule(self) -> None:
        if self._ended:
            return
        self._stop_wake_timer()
        self._stop_refill_timer()
        self._advance()

    # --- Timers ---

    def _arm_wake_timer(self, delay: float) -> None:
        self._wake_generation += 1
        self._wake_timer = self._require_loop().call_later(
            delay, self._on_wake, self._wake_generation,
        )

    def _on_wake(self, generation: int) -> None:
        if generation != self._wake_generation or self._ended:
            return
        self._wake_timer = None
        self._advance()

    def _stop_wake_timer(self) -> None:
        if self._wake_timer is not None:
            logger.debug("Stopping wake timer")
            self._wake_timer.cancel()
            self._wake_timer = None
        self._wake_generation += 1

    def _refill(self) -> None:
        """Refill the ledger and keep the idle-timeout timers in step with it."""
        if self._ledger.refill():
            self._stop_refill_timer()
            self._start_idle_timer()
        else:
            self._stop_idle_timer()
            self._start_refill_timer()

    def _start_refill_timer(self) -> None:
        if self._idle_timeout is None or self._refill_timer is not None:
            return
        loop = self._loop_or_none()
        if loop is None:
            return
        delay = self._ledger.time_until_full() + _REFILL_TIMER_SLACK
        self._refill_timer = loop.call_later(delay, self._on_refill_timer)

    def _on_refill_timer(self) -> None:
        self._refill_timer = None
        if not self._ended:
            self._refill()

    def _stop_refill_timer(self) -> None:
        if self._refill_timer is not None:
            self._refill_timer.cancel()
            self._refill_timer = None

    def _start_idle_timer(self) -> None:
        if self._idle_timeout is None or self._idle_timer is not None:
            return
        if not self._queue.is_empty or self._wake_timer is not None:
            return
        loop = self._loop_or_none()
        if loop is None:
            return
        self._idle_timer = loop.call_later(self._idle_timeout, self._on_idle_timeout)

    def _on_idle_timeout(self) -> None:
        self._idle_timer = None
        if not self._ended:
            logger.debug("Bucket idle for %ss", self._idle_timeout)
            self._notify(EventTypes.IDLE_TIMEOUT)

    def _stop_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    # --- Internal ---

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
            # Timers skipped while unbound are armed now.
            self._refill()
        return self._loop

    def _loop_or_none(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is None:
            self._loop = _running_loop()
        return self._loop

    def _check_open(self, operation: str) -> None:
        if self._ended:
            raise BucketEndedError(operation)

    def _notify(self, event_type: str, **extra: Any) -> None:
        self._notifier.notify(event_type, {**self.snapshot(), **extra})

    def _subscription(self, method: str) -> Callable[..., None]:
        func = getattr(self._notifier, method, None)
        if func is None:
            raise TypeError(
                f"{type(self._notifier).__name__} does not support {method}()"
            )
        return func


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _require_cost(value: float, name: str = "cost") -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
