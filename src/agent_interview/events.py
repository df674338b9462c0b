"""Typed publish/subscribe channel for interview sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)


class InterviewEvent(str, Enum):
    """Named events emitted by an interview session."""

    INPUT = "input"
    OUTPUT = "output"
    PROCESSING_STATE_CHANGE = "processingStateChange"
    CHANGE = "change"
    PREVIEW = "preview"
    HOMESPACE = "homespace"
    MESSAGE = "message"
    NAME = "name"
    BIO = "bio"
    DESCRIPTION = "description"
    FEATURES = "features"
    PRIVATE = "private"


@dataclass(slots=True)
class QuestionPrompt:
    """A question awaiting an answer from the caller."""

    question: str


@dataclass(slots=True)
class OutputText:
    """Assistant-authored text that expects no answer."""

    text: str


@dataclass(slots=True)
class ProcessingState:
    is_processing: bool


@dataclass(slots=True)
class FieldChange:
    """One top-level config field updated by a turn."""

    field: str
    value: Any


@dataclass(slots=True)
class ConfigChange:
    """Aggregate update applied by a turn, with the resulting object."""

    update: Mapping[str, Any]
    snapshot: Dict[str, Any]


Handler = Callable[[Any], None]
EventName = Union[InterviewEvent, str]


def _key(event: EventName) -> str:
    if isinstance(event, InterviewEvent):
        return event.value
    return str(event)


class EventChannel:
    """Delivers payloads synchronously to subscribers, in subscription order."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event: EventName, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that removes it."""

        handlers = self._handlers.setdefault(_key(event), [])
        handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def forward(
        self,
        other: "EventChannel",
        event: EventName,
        *,
        rename: Optional[EventName] = None,
    ) -> Callable[[], None]:
        """Re-emit ``event`` from this channel on ``other``."""

        target = rename if rename is not None else event
        return self.subscribe(event, lambda payload: other.emit(target, payload))

    def emit(self, event: EventName, payload: Any = None) -> None:
        """Call every handler; a failing handler is logged and skipped."""

        name = _key(event)
        for handler in list(self._handlers.get(name, ())):
            try:
                handler(payload)
            except Exception:  # noqa: BLE001 - listeners must not break the session
                logger.exception("Listener for %s event failed", name)

    def has_subscribers(self, event: EventName) -> bool:
        return bool(self._handlers.get(_key(event)))
