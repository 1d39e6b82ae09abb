"""Leaky bucket exception types."""

from __future__ import annotations


class CapacityExceededError(RuntimeError):
    """Raised when a request cannot be granted within the bucket timeout.

    ``reason`` is ``"overflow"`` when the request was refused at admission
    time and ``"displaced"`` when an already queued request was dropped
    because a pause was inserted ahead of it.
    """

    def __init__(
        self,
        max_capacity: float,
        cost: float,
        total_cost: float = 0.0,
        reason: str = "overflow",
    ) -> None:
        self.max_capacity = max_capacity
        self.cost = cost
        self.total_cost = total_cost
        self.reason = reason
        if reason == "displaced":
            message = (
                f"Cannot throttle item with cost {cost}: an item was added in "
                f"front of it and the queue overflowed "
                f"(max capacity {max_capacity})"
            )
        else:
            message = (
                f"Cannot throttle item with cost {cost}, bucket is overflowing: "
                f"max capacity is {max_capacity}, queued cost is {total_cost}"
            )
        super().__init__(message)


class BucketEndedError(RuntimeError):
    """Raised when a bucket is used after :meth:`LeakyBucket.end`."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot call {operation}() on a bucket that has ended")
