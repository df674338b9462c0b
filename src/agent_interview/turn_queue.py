"""Serialize asynchronous operations issued against one conversation."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class TurnQueue:
    """Runs submitted operations one at a time, in submission order.

    Each submission is chained behind the previous one, so ordering is fixed
    at the moment :meth:`submit` is called rather than when the returned task
    first gets scheduled. A failing operation does not block the ones queued
    behind it.
    """

    def __init__(self) -> None:
        self._tail: Optional[asyncio.Task[Any]] = None
        self._pending = 0

    @property
    def pending(self) -> int:
        """Number of operations submitted but not yet settled."""

        return self._pending

    def submit(self, operation: Callable[[], Awaitable[T]]) -> asyncio.Task[T]:
        previous = self._tail
        self._pending += 1
        task = asyncio.ensure_future(self._run_after(previous, operation))
        self._tail = task
        return task

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.submit(operation)

    async def _run_after(
        self,
        previous: Optional[asyncio.Task[Any]],
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            if previous is not None and not previous.done():
                # wait() never raises the predecessor's exception.
                await asyncio.wait([previous])
            return await operation()
        finally:
            self._pending -= 1
