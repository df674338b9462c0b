"""Completion contract client on top of Microsoft Agent Framework chat clients.

The rest of the package talks to :class:`CompletionClient`, so sessions can
run against any object with the same two coroutines. Provider client modules
are loaded on demand for the configured provider.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from importlib import import_module
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, cast

from agent_framework import ChatMessage as MAFChatMessage, Role

from .config import ModelSettings
from .prompts import build_json_reply_instructions

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatMessage:
    """One entry of a conversation history."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class MAFIntegrationError(RuntimeError):
    """Raised when the MAF client cannot be initialized."""


class CompletionError(RuntimeError):
    """A completion request failed or returned an unusable reply."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class CompletionClient(Protocol):
    async def complete(self, messages: Sequence[ChatMessage]) -> ChatMessage:
        ...

    async def complete_json(
        self,
        messages: Sequence[ChatMessage],
        output_schema: Mapping[str, Any],
    ) -> Dict[str, Any]:
        ...


def extract_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """Return the first JSON object in ``raw``, tolerating surrounding prose."""

    text = raw.strip()
    if not text:
        return None
    candidate = text
    if not candidate.startswith("{"):
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            return None
        candidate = text[start:end + 1]
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return cast(Dict[str, Any], payload)


def merge_consecutive_roles(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
    """Combine adjacent messages that share the same role.

    Chat templates expect user/assistant roles to alternate; appending the
    reply instructions after a user answer would otherwise break that.
    """

    merged: List[ChatMessage] = []
    for message in messages:
        if merged and merged[-1].role == message.role:
            previous = merged[-1]
            previous.content = f"{previous.content}\n\n{message.content}".strip()
            continue
        merged.append(ChatMessage(role=message.role, content=message.content))
    return merged


class MAFChatClient:
    """Wrapper that dispatches chat completion calls through MAF clients."""

    def __init__(self, settings: ModelSettings) -> None:
        self._settings = settings
        self._client = self._create_client(settings)

    @staticmethod
    def _create_client(settings: ModelSettings) -> Any:
        provider = settings.provider.lower()
        try:
            if provider in {"azure-openai", "azure_openai", "azure"}:
                module = import_module("agent_framework.azure")
                client_cls = getattr(module, "AzureOpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    deployment_name=settings.model,
                    endpoint=settings.endpoint,
                    api_version=settings.api_version,
                )
            if provider in {"openai", "oai"}:
                module = import_module("agent_framework.openai")
                client_cls = getattr(module, "OpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    model_id=settings.model,
                    base_url=settings.endpoint,
                )
        except ModuleNotFoundError as exc:  # pragma: no cover - MAF runtime
            missing = exc.name or "a required dependency"
            raise MAFIntegrationError(
                "Microsoft Agent Framework dependency '{missing}' is missing. "
                "Reinstall the project dependencies (e.g. `pip install -e .`)."
                .format(missing=missing)
            ) from exc
        raise MAFIntegrationError(
            f"Unsupported MAF provider '{settings.provider}'."
        )

    async def complete(self, messages: Sequence[ChatMessage]) -> ChatMessage:
        """Execute a chat completion call through the underlying MAF client."""

        payload = [
            MAFChatMessage(role=Role(msg.role), text=msg.content)
            for msg in merge_consecutive_roles(messages)
        ]
        try:
            response = await self._client.get_response(messages=payload)
        except Exception as exc:  # noqa: BLE001 - normalized for callers
            raise CompletionError(
                f"error response in completion: {exc}",
                status=_status_of(exc),
                body=str(exc),
            ) from exc
        return ChatMessage(role="assistant", content=response.text or "")

    async def complete_json(
        self,
        messages: Sequence[ChatMessage],
        output_schema: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Request a JSON object shaped like ``output_schema``.

        Only parsing happens here; structural validation is left to the
        caller, which holds a validator compiled once for the schema.
        """

        request = list(messages)
        request.append(
            ChatMessage(
                role="user",
                content=build_json_reply_instructions(output_schema),
            )
        )
        reply = await self.complete(request)
        payload = extract_json_object(reply.content)
        if payload is None:
            logger.debug("Unparseable completion reply: %s", reply.content)
            raise CompletionError(
                "completion reply was not a JSON object",
                body=reply.content,
            )
        return payload


def _status_of(exc: BaseException) -> Optional[int]:
    for attribute in ("status_code", "status"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int):
            return value
    inner = exc.__cause__
    if inner is not None and inner is not exc:
        return _status_of(inner)
    return None
