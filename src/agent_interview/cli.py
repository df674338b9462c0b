"""Command line entry-point for the agent interview."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .agent_config import AgentConfig, ensure_defaults
from .agent_store import AgentRepository
from .config import AppSettings, InterviewMode
from .features import FeatureRegistry, StaticFeatureRegistry, builtin_registry
from .image_generation import ImageGenerator
from .interview import AgentInterview
from .maf_client import MAFChatClient
from .sessions import run_interview

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-interview",
        description="Interview your way to an AI agent configuration.",
    )
    parser.add_argument(
        "--prompt",
        help="Opening description of the agent, sent before the first turn.",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in InterviewMode],
        help=(
            "Session mode. Defaults to 'edit' with --agent, otherwise "
            "AGENT_INTERVIEW_MODE."
        ),
    )
    parser.add_argument(
        "--agent",
        type=Path,
        help="Existing agent JSON file to edit.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help=(
            "Where to write the resulting agent JSON (default: the --agent "
            "file, or <AGENT_OUTPUT_DIR>/agent.json)."
        ),
    )
    parser.add_argument(
        "--feature",
        action="append",
        dest="features",
        metavar="NAME",
        help="Restrict the agent to this feature; repeat for more.",
    )
    parser.add_argument(
        "--features-file",
        type=Path,
        help="JSON file listing the feature catalog instead of the built-in one.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log interview progress at INFO level.",
    )
    parser.add_argument(
        "--tracing",
        action="store_true",
        help="Export completion spans to MAF_OTLP_ENDPOINT.",
    )
    return parser.parse_args(argv)


def _resolve_mode(
    requested: Optional[str],
    settings: AppSettings,
    editing: bool,
) -> InterviewMode:
    if requested:
        return InterviewMode.from_string(requested)
    if editing:
        return InterviewMode.EDIT
    return settings.default_mode


def _build_image_generator(settings: AppSettings) -> Optional[ImageGenerator]:
    if settings.image is None:
        logger.warning(
            "No image provider configured (FAL_KEY / OPENAI_API_KEY); "
            "avatar and homespace images will be skipped."
        )
        return None
    return ImageGenerator(settings.image)


def _build_registry(features_file: Optional[Path]) -> FeatureRegistry:
    if features_file is not None:
        return StaticFeatureRegistry.from_json_file(features_file)
    return builtin_registry()


def run_cli(argv: Optional[list[str]] = None) -> None:
    """Entry-point invoked from ``python -m agent_interview``."""

    arg_list = list(argv) if argv is not None else sys.argv[1:]
    args = _parse_args(arg_list)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = AppSettings.load()
    if args.tracing:
        from .observability import initialize_tracing

        initialize_tracing(endpoint=settings.otlp_endpoint)

    repository = AgentRepository(
        output_dir=settings.output_dir,
        archive_path=settings.session_log,
        redis_url=settings.redis_url,
    )
    if args.agent is not None:
        config = repository.load_agent(args.agent)
    else:
        config = AgentConfig()
    mode = _resolve_mode(args.mode, settings, editing=args.agent is not None)
    output_path = args.output or args.agent or repository.default_agent_path()

    captured: list[AgentInterview] = []
    result = asyncio.run(
        run_interview(
            config,
            chat_client=MAFChatClient(settings.model),
            image_generator=_build_image_generator(settings),
            registry=_build_registry(args.features_file),
            prompt=args.prompt,
            mode=mode,
            features=args.features,
            on_interview=captured.append,
        )
    )

    result = ensure_defaults(result)
    saved = repository.save_agent(result, output_path)
    messages = captured[0].messages if captured else []
    record_id = repository.record_session(
        config=result,
        messages=messages,
        mode=mode,
        agent_path=saved,
    )
    print()  # noqa: T201 - CLI UX newline
    print(f"Agent '{result.name}' saved to {saved}")  # noqa: T201 - CLI output
    logger.info("Session archived as %s in %s", record_id, repository.archive_path)


if __name__ == "__main__":  # pragma: no cover - manual execution hook
    run_cli()
