"""Configuration helpers for the agent interview runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from importlib import import_module
from pathlib import Path
from typing import Optional


class InterviewMode(str, Enum):
    """How a session is driven."""

    AUTO = "auto"
    INTERACTIVE = "interactive"
    EDIT = "edit"
    MANUAL = "manual"

    @classmethod
    def from_string(
        cls,
        mode: str | None,
        default: Optional["InterviewMode"] = None,
    ) -> "InterviewMode":
        """Normalize arbitrary user input into a valid mode."""
        if isinstance(mode, cls):
            return mode
        if not mode:
            if default is None:
                raise ValueError("Interview mode is required.")
            return default
        normalized = mode.strip().lower()
        for candidate in cls:
            if candidate.value == normalized:
                return candidate
        raise ValueError(f"invalid mode: {mode}")


@dataclass(slots=True)
class ModelSettings:
    """Holds completion model configuration for the runtime."""

    provider: str
    model: str
    endpoint: Optional[str]
    api_key: str
    api_version: Optional[str]


@dataclass(slots=True)
class ImageSettings:
    """Image generation provider and credentials."""

    provider: str
    api_key: str


@dataclass(slots=True)
class AppSettings:
    """Top-level application settings loaded from environment variables."""

    model: ModelSettings
    image: Optional[ImageSettings]
    default_mode: InterviewMode
    output_dir: Path
    session_log: Path
    redis_url: Optional[str]
    otlp_endpoint: Optional[str]

    @classmethod
    def load(cls) -> "AppSettings":
        """Load settings from the environment or .env file."""
        _ensure_dotenv()
        provider = os.getenv("MAF_MODEL_PROVIDER", "openai")
        model = os.getenv("MAF_MODEL")
        if not model:
            raise RuntimeError("MAF_MODEL environment variable is required.")
        api_key = os.getenv("MAF_MODEL_API_KEY") or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError(
                "MAF_MODEL_API_KEY environment variable is required."
            )
        default_mode = InterviewMode.from_string(
            os.getenv("AGENT_INTERVIEW_MODE"),
            default=InterviewMode.INTERACTIVE,
        )
        output_dir = Path(os.getenv("AGENT_OUTPUT_DIR", "outputs"))
        session_log = Path(
            os.getenv("AGENT_SESSION_LOG", str(output_dir / "sessions.jsonl"))
        )
        redis_url = os.getenv("AGENT_REDIS_URL", "").strip() or None
        otlp_endpoint = os.getenv("MAF_OTLP_ENDPOINT", "").strip() or None
        return cls(
            model=ModelSettings(
                provider=provider,
                model=model,
                endpoint=os.getenv("MAF_MODEL_ENDPOINT"),
                api_key=api_key,
                api_version=os.getenv("MAF_MODEL_API_VERSION"),
            ),
            image=_load_image_settings(),
            default_mode=default_mode,
            output_dir=output_dir,
            session_log=session_log,
            redis_url=redis_url,
            otlp_endpoint=otlp_endpoint,
        )


def _load_image_settings() -> Optional[ImageSettings]:
    """Pick the image provider, preferring fal.ai when both keys exist."""

    provider = os.getenv("AGENT_IMAGE_PROVIDER", "").strip().lower()
    fal_key = os.getenv("FAL_KEY")
    openai_key = os.getenv("OPENAI_API_KEY")
    if provider == "fal":
        if not fal_key:
            raise RuntimeError("FAL_KEY is required for the fal image provider.")
        return ImageSettings(provider="fal", api_key=fal_key)
    if provider == "openai":
        if not openai_key:
            raise RuntimeError(
                "OPENAI_API_KEY is required for the openai image provider."
            )
        return ImageSettings(provider="openai", api_key=openai_key)
    if provider:
        raise RuntimeError(f"Unsupported AGENT_IMAGE_PROVIDER '{provider}'.")
    if fal_key:
        return ImageSettings(provider="fal", api_key=fal_key)
    if openai_key:
        return ImageSettings(provider="openai", api_key=openai_key)
    return None


def _ensure_dotenv() -> None:
    """Load dotenv variables and provide a helpful error if missing."""

    try:
        dotenv_module = import_module("dotenv")
    except ModuleNotFoundError as exc:  # pragma: no cover - optional dep
        raise RuntimeError(
            "python-dotenv is required. Install with `pip install "
            "python-dotenv`."
        ) from exc

    load_dotenv = getattr(dotenv_module, "load_dotenv")
    load_dotenv()
