"""Terminal driver that runs an agent interview against stdin/stdout."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .agent_config import AgentConfig
from .config import InterviewMode
from .events import (
    ConfigChange,
    FieldChange,
    InterviewEvent,
    OutputText,
    ProcessingState,
)
from .features import FeatureRegistry
from .interactor import InteractorClosedError
from .interview import AgentInterview, ImageSource
from .maf_client import CompletionClient, CompletionError
from .value_updater import ValueResult

logger = logging.getLogger(__name__)

TERMINATION_TOKENS = {"/done", "/end", "[end]"}

AnswerProvider = Callable[[str], Awaitable[str]]
ProcessingCallback = Callable[[bool], None]
Printer = Callable[[str], None]


async def console_answer(question: str) -> str:
    """Ask ``question`` on the terminal without blocking the event loop."""

    if question:
        print()  # noqa: T201 - CLI UX newline
        print(f"Agent: {question}")  # noqa: T201 - CLI output
    answer = await asyncio.to_thread(input, "You: ")
    return answer.strip()


def format_field_update(field: str, value: Any) -> str:
    if isinstance(value, dict):
        lines = [f"[AGENT UPDATE] {field}"]
        for key, entry in value.items():
            if entry is not None:
                lines.append(f"  -> {key}: {entry}")
        return "\n".join(lines)
    return f"[AGENT UPDATE] {field} -> {value}"


async def run_interview(
    config: AgentConfig,
    *,
    chat_client: CompletionClient,
    image_generator: Optional[ImageSource] = None,
    registry: Optional[FeatureRegistry] = None,
    prompt: Optional[str] = None,
    mode: Union[InterviewMode, str] = InterviewMode.INTERACTIVE,
    features: Optional[Iterable[str]] = None,
    answer_provider: AnswerProvider = console_answer,
    processing_cb: Optional[ProcessingCallback] = None,
    printer: Printer = print,
    on_interview: Optional[Callable[[AgentInterview], None]] = None,
) -> AgentConfig:
    """Conduct a full interview and return the final agent config.

    Questions are answered through ``answer_provider``. Typing one of
    :data:`TERMINATION_TOKENS` forces the model to finish the config. A
    failed turn is reported and the same question is asked again.
    """

    feature_specs = await registry.get_all_features() if registry else []
    interview = AgentInterview(
        config=config,
        mode=mode,
        chat_client=chat_client,
        image_generator=image_generator,
        feature_specs=feature_specs,
        features=features,
        prompt=prompt,
    )
    if on_interview is not None:
        on_interview(interview)

    questions: "asyncio.Queue[str]" = asyncio.Queue()
    interview.events.subscribe(
        InterviewEvent.INPUT,
        lambda payload: questions.put_nowait(payload.question),
    )
    interview.events.subscribe(
        InterviewEvent.OUTPUT,
        lambda payload: _print_output(printer, payload),
    )
    for field in ("name", "bio", "description", "features", "private"):
        interview.events.subscribe(
            field,
            lambda payload: _print_field(printer, payload),
        )
    interview.events.subscribe(
        InterviewEvent.PREVIEW,
        lambda payload: _print_asset(printer, "Avatar updated (preview)", payload),
    )
    interview.events.subscribe(
        InterviewEvent.HOMESPACE,
        lambda payload: _print_asset(printer, "Homespace updated (preview)", payload),
    )
    interview.events.subscribe(InterviewEvent.CHANGE, _log_change)
    if processing_cb is not None:
        interview.events.subscribe(
            InterviewEvent.PROCESSING_STATE_CHANGE,
            lambda payload: _notify_processing(processing_cb, payload),
        )
    if interview.mode is InterviewMode.MANUAL:
        # Nothing prompts in manual mode; let the caller lead.
        questions.put_nowait("")

    finished = asyncio.ensure_future(interview.wait_for_finish())
    try:
        while True:
            next_question = asyncio.ensure_future(questions.get())
            await asyncio.wait(
                {next_question, finished},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if finished.done():
                next_question.cancel()
                break
            question = next_question.result()
            answer = await answer_provider(question)
            try:
                if answer.lower() in TERMINATION_TOKENS:
                    await interview.end()
                else:
                    await interview.write(answer)
            except InteractorClosedError:
                break
            except CompletionError as exc:
                logger.warning("Turn failed: %s", exc)
                printer(f"Something went wrong ({exc}). Let's try that again.")
                questions.put_nowait(question)
        return await finished
    finally:
        if not finished.done():
            finished.cancel()


def _print_output(printer: Printer, payload: OutputText) -> None:
    printer(f"Agent: {payload.text}")


def _print_field(printer: Printer, payload: FieldChange) -> None:
    printer(format_field_update(payload.field, payload.value))


def _print_asset(printer: Printer, label: str, payload: ValueResult[Any]) -> None:
    if payload.token.cancelled or payload.result is None:
        return
    printer(f"[AGENT UPDATE] {label}")


def _log_change(payload: ConfigChange) -> None:
    logger.debug("Applied update to fields: %s", ", ".join(payload.update))


def _notify_processing(callback: ProcessingCallback, payload: ProcessingState) -> None:
    callback(payload.is_processing)


async def create_agent(**kwargs: Any) -> AgentConfig:
    """Interview a fresh agent into existence."""

    return await run_interview(AgentConfig(), **kwargs)


async def edit_agent(config: AgentConfig, **kwargs: Any) -> AgentConfig:
    """Interview changes into an existing agent."""

    kwargs.setdefault("mode", InterviewMode.EDIT)
    return await run_interview(config, **kwargs)
