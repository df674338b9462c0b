"""Schema-constrained conversation that edits one configuration object."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from jsonschema import Draft202012Validator

from .agent_config import AgentConfig, drop_unset_features, merge_update, prompt_state
from .events import EventChannel, InterviewEvent, ProcessingState
from .maf_client import ChatMessage, CompletionClient, CompletionError
from .prompts import build_interactor_system_prompt
from .turn_queue import TurnQueue

logger = logging.getLogger(__name__)

UpdateFilter = Callable[[Optional[Mapping[str, Any]]], Optional[Dict[str, Any]]]


class InteractorClosedError(RuntimeError):
    """Raised for turns that start after the conversation was closed."""


@dataclass(slots=True)
class TurnResult:
    """Outcome of one turn, as delivered with the ``message`` event."""

    response: str
    update_object: Optional[Dict[str, Any]]
    done: bool
    snapshot: Dict[str, Any]


def turn_schema(object_schema: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "response": {"type": "string"},
            "updateObject": {
                "anyOf": [copy.deepcopy(dict(object_schema)), {"type": "null"}],
            },
            "done": {"type": "boolean"},
        },
        "required": ["response", "updateObject", "done"],
    }


def final_schema(object_schema: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {"output": copy.deepcopy(dict(object_schema))},
        "required": ["output"],
    }


class Interactor:
    """Owns the message history and live config of one conversation.

    Turns go through a :class:`TurnQueue`, so a second :meth:`write` issued
    before the first settles waits its turn. Every turn emits
    ``processingStateChange`` before and after the completion call and, on
    success, a ``message`` event with a :class:`TurnResult`.
    """

    def __init__(
        self,
        *,
        instructions: str,
        config: AgentConfig,
        object_schema: Mapping[str, Any],
        chat_client: CompletionClient,
        user_prompt: Optional[str] = None,
        update_filter: UpdateFilter = drop_unset_features,
    ) -> None:
        self.config = config.copy()
        self.events = EventChannel()
        self._chat_client = chat_client
        self._update_filter = update_filter
        self._turn_schema = turn_schema(object_schema)
        self._final_schema = final_schema(object_schema)
        self._turn_validator = Draft202012Validator(self._turn_schema)
        self._final_validator = Draft202012Validator(self._final_schema)
        self.messages: List[ChatMessage] = [
            ChatMessage(
                role="system",
                content=build_interactor_system_prompt(
                    instructions, prompt_state(self.config)
                ),
            )
        ]
        if user_prompt:
            self.messages.append(ChatMessage(role="user", content=user_prompt))
        self._queue = TurnQueue()
        self._is_processing = False
        self._closed = False

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Reject every turn that has not started yet."""

        self._closed = True

    def write(self, text: str = "") -> "asyncio.Task[TurnResult]":
        """Queue a conversational turn, optionally answering with ``text``."""

        return self._queue.submit(lambda: self._run_turn(text, final=False))

    def end(self, text: str = "") -> "asyncio.Task[TurnResult]":
        """Queue a turn that forces a complete object and ends the session."""

        return self._queue.submit(lambda: self._run_turn(text, final=True))

    async def _run_turn(self, text: str, *, final: bool) -> TurnResult:
        if self._closed:
            raise InteractorClosedError("The conversation is closed.")
        self._set_processing(True)
        try:
            if text:
                self.messages.append(ChatMessage(role="user", content=text))
            logger.debug(
                "Requesting %s completion over %d messages",
                "final" if final else "turn",
                len(self.messages),
            )
            if final:
                payload = await self._chat_client.complete_json(
                    self.messages, self._final_schema
                )
                self._validate(self._final_validator, payload)
                reply: Dict[str, Any] = {
                    "response": "",
                    "updateObject": payload["output"],
                    "done": True,
                }
            else:
                payload = await self._chat_client.complete_json(
                    self.messages, self._turn_schema
                )
                self._validate(self._turn_validator, payload)
                reply = {
                    "response": payload["response"],
                    "updateObject": payload["updateObject"],
                    "done": payload["done"],
                }
            update = self._update_filter(reply["updateObject"])
            merge_update(self.config, update)
            self.messages.append(
                ChatMessage(
                    role="assistant",
                    content=json.dumps(reply, indent=2, ensure_ascii=False),
                )
            )
            result = TurnResult(
                response=reply["response"],
                update_object=update,
                done=reply["done"],
                snapshot=self.config.snapshot(),
            )
            self.events.emit(InterviewEvent.MESSAGE, result)
            return result
        finally:
            self._set_processing(False)

    def _set_processing(self, is_processing: bool) -> None:
        self._is_processing = is_processing
        self.events.emit(
            InterviewEvent.PROCESSING_STATE_CHANGE,
            ProcessingState(is_processing=is_processing),
        )

    @staticmethod
    def _validate(validator: Draft202012Validator, payload: Dict[str, Any]) -> None:
        problems = [error.message for error in validator.iter_errors(payload)]
        if problems:
            raise CompletionError(
                "completion reply does not match the requested schema: "
                + "; ".join(problems[:5]),
                body=json.dumps(payload, ensure_ascii=False),
            )
