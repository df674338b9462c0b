"""Session controller that interviews a user into an agent configuration."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

from .agent_config import IMAGE_DESCRIPTION_FIELDS, AgentConfig
from .config import InterviewMode
from .events import (
    ConfigChange,
    EventChannel,
    FieldChange,
    InterviewEvent,
    OutputText,
    ProcessingState,
    QuestionPrompt,
)
from .features import FeatureSchema, FeatureSpec, build_feature_schema
from .image_generation import GeneratedImage, bytes_to_data_url
from .interactor import Interactor, InteractorClosedError, TurnResult
from .maf_client import CompletionClient
from .prompts import build_agent_instructions, opening_question
from .value_updater import CancellationToken, ValueUpdater

logger = logging.getLogger(__name__)


class InterviewState(str, Enum):
    INITIALIZING = "initializing"
    INTERACTIVE_WAIT = "interactive-wait"
    EDIT_WAIT = "edit-wait"
    MANUAL_WAIT = "manual-wait"
    AUTO_RUNNING = "auto-running"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    DONE = "done"


_WAIT_STATES: FrozenSet[InterviewState] = frozenset(
    {
        InterviewState.INTERACTIVE_WAIT,
        InterviewState.EDIT_WAIT,
        InterviewState.MANUAL_WAIT,
        InterviewState.AUTO_RUNNING,
    }
)

TRANSITIONS: Dict[InterviewState, FrozenSet[InterviewState]] = {
    InterviewState.INITIALIZING: _WAIT_STATES,
    InterviewState.INTERACTIVE_WAIT: frozenset({InterviewState.PROCESSING}),
    InterviewState.EDIT_WAIT: frozenset({InterviewState.PROCESSING}),
    InterviewState.MANUAL_WAIT: frozenset({InterviewState.PROCESSING}),
    InterviewState.AUTO_RUNNING: frozenset({InterviewState.PROCESSING}),
    InterviewState.PROCESSING: _WAIT_STATES | {InterviewState.FINALIZING},
    InterviewState.FINALIZING: frozenset({InterviewState.DONE}),
    InterviewState.DONE: frozenset(),
}

_IDLE_STATES: Dict[InterviewMode, InterviewState] = {
    InterviewMode.AUTO: InterviewState.AUTO_RUNNING,
    InterviewMode.INTERACTIVE: InterviewState.INTERACTIVE_WAIT,
    InterviewMode.EDIT: InterviewState.EDIT_WAIT,
    InterviewMode.MANUAL: InterviewState.MANUAL_WAIT,
}


class InvalidTransitionError(RuntimeError):
    """Raised for a state change the session does not allow."""


class InterviewClosedError(InteractorClosedError):
    """Raised when input arrives after the session started finalizing."""


class AssetTypeError(TypeError):
    """Raised when an asset result cannot be turned into a reference."""


def transition(current: InterviewState, target: InterviewState) -> InterviewState:
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move interview from {current.value} to {target.value}."
        )
    return target


def idle_state_for(mode: InterviewMode) -> InterviewState:
    return _IDLE_STATES[mode]


def resolve_asset_reference(result: Any) -> str:
    """Turn a finished asset result into a persistable reference."""

    if isinstance(result, str):
        return result
    if isinstance(result, GeneratedImage):
        return result.to_data_url()
    if isinstance(result, (bytes, bytearray)):
        return bytes_to_data_url(bytes(result))
    if result is None:
        return ""
    raise AssetTypeError(f"invalid result type: {type(result).__name__}")


def build_object_schema(feature_schema: FeatureSchema) -> Dict[str, Any]:
    """JSON schema of the fields the model may set on the agent."""

    return {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "bio": {"type": "string"},
            "description": {"type": "string"},
            "visualDescription": {"type": "string"},
            "homespaceDescription": {"type": "string"},
            "features": feature_schema.schema,
            "private": {"type": "boolean"},
        },
        "additionalProperties": False,
    }


def _has_value(value: Any) -> bool:
    return value is not None


def should_emit_field(key: str, value: Any) -> bool:
    if key in IMAGE_DESCRIPTION_FIELDS:
        return False
    if key == "features" and isinstance(value, dict):
        return any(_has_value(entry) for entry in value.values())
    return _has_value(value)


class ImageSource(Protocol):
    async def generate_character_image(self, prompt: str) -> Tuple[str, GeneratedImage]:
        ...

    async def generate_background_image(self, prompt: str) -> Tuple[str, GeneratedImage]:
        ...


class AgentInterview:
    """Drives one interview from the opening question to the final config.

    Must be constructed inside a running event loop. The mode is dispatched
    on the next loop iteration, so listeners subscribed right after
    construction see the first event. Events are published on
    :attr:`events`:

    - ``input``: :class:`QuestionPrompt`, answer it with :meth:`write`
    - ``output``: :class:`OutputText`, closing remarks
    - ``processingStateChange``: :class:`ProcessingState`
    - ``name``, ``bio``, ``description``, ``features``, ``private``:
      :class:`FieldChange`
    - ``change``: :class:`ConfigChange`
    - ``preview``, ``homespace``: :class:`ValueResult` from the image
      pipelines; check ``token.cancelled`` before using ``result``
    """

    def __init__(
        self,
        *,
        config: AgentConfig,
        mode: Union[InterviewMode, str],
        chat_client: CompletionClient,
        image_generator: Optional[ImageSource] = None,
        feature_specs: Sequence[FeatureSpec] = (),
        features: Optional[Iterable[str]] = None,
        prompt: Optional[str] = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        self.mode = InterviewMode.from_string(mode)
        self.events = EventChannel()
        self._state = InterviewState.INITIALIZING
        self._images = image_generator

        self.feature_schema = build_feature_schema(list(feature_specs), features)
        instructions = build_agent_instructions(self.mode, self.feature_schema)

        self._preview_updater: ValueUpdater[str, Any] = ValueUpdater(
            self._render_avatar, label="avatar"
        )
        self._homespace_updater: ValueUpdater[str, Any] = ValueUpdater(
            self._render_homespace, label="homespace"
        )
        self._preview_updater.events.forward(
            self.events, "change", rename=InterviewEvent.PREVIEW
        )
        self._homespace_updater.events.forward(
            self.events, "change", rename=InterviewEvent.HOMESPACE
        )
        if config.preview_url:
            self._preview_updater.set_result(
                config.preview_url, value=config.visual_description
            )
        if config.homespace_url:
            self._homespace_updater.set_result(
                config.homespace_url, value=config.homespace_description
            )

        self.interactor = Interactor(
            instructions=instructions,
            config=config,
            object_schema=build_object_schema(self.feature_schema),
            chat_client=chat_client,
            user_prompt=prompt,
        )
        self.interactor.events.subscribe(
            InterviewEvent.PROCESSING_STATE_CHANGE, self._on_processing_state
        )
        self.interactor.events.subscribe(InterviewEvent.MESSAGE, self._on_message)

        self._finished: "asyncio.Future[AgentConfig]" = loop.create_future()
        self._finalize_task: Optional["asyncio.Task[None]"] = None
        loop.call_soon(self._start)

    @property
    def state(self) -> InterviewState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state in {InterviewState.FINALIZING, InterviewState.DONE}

    @property
    def config(self) -> AgentConfig:
        """Live config object; treat as read-only while the session runs."""

        return self.interactor.config

    @property
    def messages(self) -> List[Any]:
        return list(self.interactor.messages)

    def write(self, answer: str) -> "asyncio.Task[TurnResult]":
        """Forward caller input as the next turn."""

        self._ensure_open()
        return self.interactor.write(answer)

    def end(self, text: str = "") -> "asyncio.Task[TurnResult]":
        """Force a schema-complete answer and finish the session."""

        self._ensure_open()
        return self.interactor.end(text)

    async def wait_for_finish(self) -> AgentConfig:
        return await self._finished

    def _ensure_open(self) -> None:
        if self.done:
            raise InterviewClosedError("The interview has already finished.")

    def _move_to(self, target: InterviewState) -> None:
        logger.debug("Interview state %s -> %s", self._state.value, target.value)
        self._state = transition(self._state, target)

    def _start(self) -> None:
        if self._state is not InterviewState.INITIALIZING:
            return
        self._move_to(idle_state_for(self.mode))
        if self.mode is InterviewMode.AUTO:
            task = self.interactor.end()
            task.add_done_callback(self._on_auto_settled)
            return
        question = opening_question(self.mode)
        if question is not None:
            self.events.emit(InterviewEvent.INPUT, QuestionPrompt(question=question))

    def _on_auto_settled(self, task: "asyncio.Task[TurnResult]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._finished.done():
            # Nobody else awaits the forced completion in auto mode.
            self._finished.set_exception(exc)

    def _on_processing_state(self, payload: ProcessingState) -> None:
        if payload.is_processing:
            if self._state in _WAIT_STATES:
                self._move_to(InterviewState.PROCESSING)
        elif self._state is InterviewState.PROCESSING:
            # The turn failed; history and config are intact, so resume.
            self._move_to(idle_state_for(self.mode))
        self.events.emit(InterviewEvent.PROCESSING_STATE_CHANGE, payload)

    def _on_message(self, result: TurnResult) -> None:
        update = result.update_object
        if update:
            for key, value in update.items():
                if should_emit_field(key, value):
                    self.events.emit(key, FieldChange(field=key, value=value))
            self.events.emit(
                InterviewEvent.CHANGE,
                ConfigChange(update=update, snapshot=result.snapshot),
            )
            visual = update.get("visualDescription")
            if visual:
                self._preview_updater.set(visual)
            homespace = update.get("homespaceDescription")
            if homespace:
                self._homespace_updater.set(homespace)

        if not result.done:
            self._move_to(idle_state_for(self.mode))
            self.events.emit(
                InterviewEvent.INPUT, QuestionPrompt(question=result.response)
            )
            return

        self._move_to(InterviewState.FINALIZING)
        self.interactor.close()
        if result.response:
            self.events.emit(InterviewEvent.OUTPUT, OutputText(text=result.response))
        self._finalize_task = asyncio.ensure_future(self._finalize())

    async def _finalize(self) -> None:
        try:
            preview_url, homespace_url = await asyncio.gather(
                self._asset_reference(self._preview_updater),
                self._asset_reference(self._homespace_updater),
            )
        except Exception as exc:  # noqa: BLE001 - delivered via wait_for_finish
            logger.error("Interview finalization failed: %s", exc)
            self._move_to(InterviewState.DONE)
            if not self._finished.done():
                self._finished.set_exception(exc)
            return
        final = self.interactor.config.copy()
        final.preview_url = preview_url
        final.homespace_url = homespace_url
        self._move_to(InterviewState.DONE)
        if not self._finished.done():
            self._finished.set_result(final)

    @staticmethod
    async def _asset_reference(updater: ValueUpdater[str, Any]) -> str:
        return resolve_asset_reference(await updater.wait_for_load())

    async def _render_avatar(
        self, description: str, token: CancellationToken
    ) -> Optional[GeneratedImage]:
        if self._images is None:
            return None
        token.raise_if_cancelled()
        _, image = await self._images.generate_character_image(description)
        if token.cancelled:
            logger.debug("Dropping avatar render superseded while in flight")
            return None
        return image

    async def _render_homespace(
        self, description: str, token: CancellationToken
    ) -> Optional[GeneratedImage]:
        if self._images is None:
            return None
        token.raise_if_cancelled()
        _, image = await self._images.generate_background_image(description)
        if token.cancelled:
            logger.debug("Dropping homespace render superseded while in flight")
            return None
        return image
