"""Scripted stand-ins for the completion and image services."""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from agent_interview.image_generation import GeneratedImage
from agent_interview.maf_client import ChatMessage, CompletionError

Reply = Union[Dict[str, Any], BaseException, Callable[..., Dict[str, Any]]]


class ScriptedCompletionClient:
    """Returns canned replies in order and records every request."""

    def __init__(self, replies: Sequence[Reply] = (), *, delay: float = 0.0) -> None:
        self._replies: List[Reply] = list(replies)
        self._delay = delay
        self.calls: List[Tuple[List[ChatMessage], Mapping[str, Any]]] = []

    async def complete(self, messages: Sequence[ChatMessage]) -> ChatMessage:
        raise AssertionError("only structured completions are expected")

    async def complete_json(
        self,
        messages: Sequence[ChatMessage],
        output_schema: Mapping[str, Any],
    ) -> Dict[str, Any]:
        history = [ChatMessage(role=m.role, content=m.content) for m in messages]
        self.calls.append((history, output_schema))
        await asyncio.sleep(self._delay)
        if not self._replies:
            raise CompletionError("no scripted reply left", status=500)
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(history, output_schema)
        return copy.deepcopy(reply)


class FakeImageSource:
    """Produces deterministic PNG payloads from the description text."""

    def __init__(self, *, delay: float = 0.0, error: Optional[Exception] = None) -> None:
        self._delay = delay
        self._error = error
        self.character_prompts: List[str] = []
        self.background_prompts: List[str] = []

    async def generate_character_image(self, prompt: str) -> Tuple[str, GeneratedImage]:
        self.character_prompts.append(prompt)
        return prompt, await self._render(prompt)

    async def generate_background_image(self, prompt: str) -> Tuple[str, GeneratedImage]:
        self.background_prompts.append(prompt)
        return prompt, await self._render(prompt)

    async def _render(self, prompt: str) -> GeneratedImage:
        await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return GeneratedImage(data=prompt.encode("utf-8"), content_type="image/png")


def turn_reply(
    response: str,
    update: Optional[Dict[str, Any]] = None,
    *,
    done: bool = False,
) -> Dict[str, Any]:
    return {"response": response, "updateObject": update, "done": done}


def final_reply(output: Dict[str, Any]) -> Dict[str, Any]:
    return {"output": output}


PIRATE = {
    "name": "Captain Brinebeard",
    "bio": "A boisterous buccaneer who loves sea shanties.",
    "description": "Ask him about buried treasure and stormy seas.",
    "visualDescription": "old pirate with a red coat and a tricorn hat",
    "homespaceDescription": "wooden galleon deck at sunset",
    "features": {},
    "private": False,
}
