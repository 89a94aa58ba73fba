"""Unit tests for async concurrency primitives."""

from __future__ import annotations

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from execution_policy.utils.concurrency import CancellationToken, gather_barrier, partition


@settings(max_examples=100, deadline=None)
@given(items=st.lists(st.integers(), max_size=60), size=st.integers(min_value=1, max_value=12))
def test_partition_preserves_order_and_bounds_group_size(items: list[int], size: int) -> None:
    groups = partition(items, size)

    assert [item for group in groups for item in group] == items
    assert all(1 <= len(group) <= size for group in groups)
    assert all(len(group) == size for group in groups[:-1])


@pytest.mark.parametrize("size", [0, -2, 2.0, False])
def test_partition_rejects_invalid_size(size: object) -> None:
    with pytest.raises(ValueError, match="size"):
        partition([1, 2, 3], size)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_gather_barrier_returns_results_and_exceptions_in_order() -> None:
    async def value(delay: float, result: int) -> int:
        await asyncio.sleep(delay)
        return result

    async def fail() -> int:
        raise RuntimeError("boom")

    outcomes = await gather_barrier([value(0.02, 1), fail(), value(0.0, 3)])

    assert outcomes[0] == 1
    assert isinstance(outcomes[1], RuntimeError)
    assert outcomes[2] == 3


@pytest.mark.asyncio
async def test_gather_barrier_of_nothing() -> None:
    assert await gather_barrier([]) == []


@pytest.mark.asyncio
async def test_gather_barrier_reraises_cancellation() -> None:
    async def cancelled() -> int:
        raise asyncio.CancelledError

    with pytest.raises(asyncio.CancelledError):
        await gather_barrier([cancelled()])


@pytest.mark.asyncio
async def test_cancellation_token() -> None:
    token = CancellationToken()
    assert not token.is_cancelled
    token.raise_if_cancelled()

    waiter = asyncio.create_task(token.wait())
    token.cancel()
    await asyncio.wait_for(waiter, timeout=1.0)

    assert token.is_cancelled
    with pytest.raises(asyncio.CancelledError, match="operation cancelled"):
        token.raise_if_cancelled()
