"""leaky_bucket.decorators -- throttle coroutine functions through a bucket.

Public API:
    throttled -- decorator that awaits a bucket grant before every call
"""
from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:
    from leaky_bucket.bucket import LeakyBucket

__all__ = ["throttled"]

CostSpec = Union[float, Callable[..., float]]


def throttled(bucket: LeakyBucket, cost: CostSpec = 1) -> Callable:
    """Decorator that admits every call of a coroutine function through *bucket*.

    Args:
        bucket: The bucket granting the calls.
        cost: Cost per call, or a callable receiving the call's arguments
            and returning the cost.

    Raises:
        CapacityExceededError: When the bucket rejects or drops the call.
            The wrapped function does not run.

    Example::

        bucket = LeakyBucket(capacity=10, interval=1)

        @throttled(bucket, cost=lambda prompt: len(prompt) / 100)
        async def complete(prompt: str) -> str:
            return await client.complete(prompt)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            call_cost = cost(*args, **kwargs) if callable(cost) else cost
            await bucket.throttle(call_cost)
            return await func(*args, **kwargs)

        return wrapper

    return decorator
