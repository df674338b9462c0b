"""Latest-input-wins pipeline for expensive derived values."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .events import EventChannel

logger = logging.getLogger(__name__)

V = TypeVar("V")
R = TypeVar("R")

_UNSET: Any = object()


class CancellationToken:
    """Cooperative cancellation flag handed to every transform."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError("superseded by a newer value")


@dataclass(slots=True)
class ValueResult(Generic[R]):
    """Payload of a ``change`` event.

    Superseded transforms still report here; check ``token.cancelled`` before
    trusting ``result``.
    """

    result: R
    token: CancellationToken


Transform = Callable[[V, CancellationToken], Awaitable[R]]


class ValueUpdater(Generic[V, R]):
    """Runs ``transform`` for the most recently set input value.

    Setting a new value cancels the token of the in-flight transform and
    starts another one. The old transform keeps running until it notices its
    token; only the newest result is returned from :meth:`wait_for_load`.
    """

    def __init__(self, transform: Transform[V, R], *, label: str = "value") -> None:
        self._transform = transform
        self._label = label
        self.events = EventChannel()
        self._last_value: Any = _UNSET
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task[R]] = None
        self._result: Optional[R] = None
        self._invocations = 0

    @property
    def invocations(self) -> int:
        """How many times the transform has been started."""

        return self._invocations

    def set(self, value: V) -> bool:
        """Accept ``value``; return ``False`` when it matches the last one."""

        if self._last_value is not _UNSET and value == self._last_value:
            return False
        self._last_value = value
        self._cancel_current()
        token = CancellationToken()
        self._token = token
        self._invocations += 1
        task = asyncio.ensure_future(self._transform(value, token))
        self._task = task
        task.add_done_callback(lambda done: self._on_settled(done, token))
        return True

    def set_result(self, result: R, *, value: Optional[V] = None) -> None:
        """Install ``result`` directly, abandoning any in-flight transform.

        ``value`` is the input ``result`` was derived from; a later
        :meth:`set` with the same input is then a no-op.
        """

        self._cancel_current()
        if value is not None:
            self._last_value = value
        self._token = None
        self._task = None
        self._result = result

    async def wait_for_load(self) -> Optional[R]:
        """Return the newest result, waiting for its transform if needed."""

        if self._task is not None:
            return await self._task
        return self._result

    def _cancel_current(self) -> None:
        if self._token is not None:
            self._token.cancel()
            if self._task is not None and not self._task.done():
                logger.debug("Superseding in-flight %s transform", self._label)
        self._token = None

    def _on_settled(self, task: "asyncio.Task[R]", token: CancellationToken) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Still raised from wait_for_load() when this is the live task.
            logger.warning(
                "%s transform failed: %s",
                self._label.capitalize(),
                exc,
            )
            return
        self.events.emit("change", ValueResult(result=task.result(), token=token))
