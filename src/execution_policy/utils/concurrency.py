"""Async concurrency primitives used by the batch runner and session."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable, Sequence

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


def partition(items: Sequence[T], size: int) -> list[tuple[T, ...]]:
    """Split ``items`` into consecutive groups of at most ``size``."""
    if isinstance(size, bool) or not isinstance(size, int):
        raise ValueError(f"size must be an integer, got {type(size).__name__}")
    if size < 1:
        raise ValueError("size must be >= 1")
    return [tuple(items[start : start + size]) for start in range(0, len(items), size)]


async def gather_barrier(awaitables: Iterable[Awaitable[T]]) -> list[T | Exception]:
    """
    Run a group to completion and return results or exceptions in submission order.

    Nothing is returned until every member has resolved. Exceptions that are not
    ``Exception`` subclasses, such as cancellation, propagate.
    """

    pending = list(awaitables)
    if not pending:
        return []
    results = await asyncio.gather(*pending, return_exceptions=True)
    outcomes: list[T | Exception] = []
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        outcomes.append(result)
    return outcomes


__all__ = ["CancellationToken", "gather_barrier", "partition"]
