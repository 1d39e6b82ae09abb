"""Tests for the throttled decorator."""
from __future__ import annotations

import asyncio

import pytest

from leaky_bucket import CapacityExceededError, LeakyBucket, throttled


def test_throttled_function_runs_and_returns():
    async def _run():
        bucket = LeakyBucket(capacity=10, interval=1)

        @throttled(bucket)
        async def double(value: int) -> int:
            await asyncio.sleep(0)
            return value * 2

        result = await double(5)
        assert bucket.current_capacity == pytest.approx(9, abs=0.05)
        bucket.end()
        return result

    assert asyncio.run(_run()) == 10


def test_cost_callable_receives_arguments():
    async def _run():
        bucket = LeakyBucket(capacity=100, interval=100)
        seen = []

        @throttled(bucket, cost=lambda text: len(text))
        async def send(text: str) -> str:
            seen.append(text)
            return text

        await send("hello")
        assert bucket.current_capacity == pytest.approx(95, abs=0.05)
        bucket.end()
        return seen

    assert asyncio.run(_run()) == ["hello"]


def test_rejected_call_does_not_run():
    async def _run():
        bucket = LeakyBucket(capacity=10, interval=1)
        calls = []

        @throttled(bucket, cost=11)
        async def work() -> None:
            calls.append(1)

        with pytest.raises(CapacityExceededError):
            await work()
        bucket.end()
        return calls

    assert asyncio.run(_run()) == []


def test_wraps_preserves_metadata():
    bucket = LeakyBucket(capacity=10, interval=1)

    @throttled(bucket)
    async def documented() -> None:
        """Docstring survives."""

    assert documented.__name__ == "documented"
    assert documented.__doc__ == "Docstring survives."
