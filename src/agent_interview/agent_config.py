"""The agent configuration object built up by an interview."""

from __future__ import annotations

import copy
import random
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple, cast

DEFAULT_MODELS: Tuple[str, ...] = (
    "openai:gpt-4o-2024-08-06",
    "anthropic:claude-3-5-sonnet-20240620",
    "openrouter:nousresearch/hermes-3-llama-3.1-405b",
    "openrouter:nousresearch/hermes-3-llama-3.1-70b",
    "openrouter:google/gemini-2.0-flash-exp:free",
)
DEFAULT_SMALL_MODELS: Tuple[str, ...] = ("openai:gpt-4o-mini",)
DEFAULT_LARGE_MODELS: Tuple[str, ...] = ("openai:o1-preview",)
DEFAULT_VOICE_ENDPOINT = "elevenlabs:scillia:kNBPK9DILaezWWUSHpF9"

# attribute name -> persisted JSON key
_JSON_KEYS: Dict[str, str] = {
    "name": "name",
    "bio": "bio",
    "description": "description",
    "visual_description": "visualDescription",
    "homespace_description": "homespaceDescription",
    "model": "model",
    "small_model": "smallModel",
    "large_model": "largeModel",
    "preview_url": "previewUrl",
    "avatar_url": "avatarUrl",
    "homespace_url": "homespaceUrl",
    "voice_endpoint": "voiceEndpoint",
    "features": "features",
    "private": "private",
}
_ATTRIBUTES: Dict[str, str] = {value: key for key, value in _JSON_KEYS.items()}

# Fields the completion provider is allowed to update, in schema order.
UPDATABLE_FIELDS: Tuple[str, ...] = (
    "name",
    "bio",
    "description",
    "visualDescription",
    "homespaceDescription",
    "features",
    "private",
)
IMAGE_DESCRIPTION_FIELDS: Tuple[str, ...] = (
    "visualDescription",
    "homespaceDescription",
)


def _empty_features() -> Dict[str, Any]:
    return {}


def _empty_extra() -> Dict[str, Any]:
    return {}


@dataclass(slots=True)
class AgentConfig:
    """Mutable agent description; ``None`` marks an unset field."""

    name: Optional[str] = None
    bio: Optional[str] = None
    description: Optional[str] = None
    visual_description: Optional[str] = None
    homespace_description: Optional[str] = None
    model: Optional[str] = None
    small_model: Optional[str] = None
    large_model: Optional[str] = None
    preview_url: Optional[str] = None
    avatar_url: Optional[str] = None
    homespace_url: Optional[str] = None
    voice_endpoint: Optional[str] = None
    features: Dict[str, Any] = field(default_factory=_empty_features)
    private: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=_empty_extra)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentConfig":
        """Build a config from its persisted JSON shape.

        Keys this class does not model are kept in ``extra`` so they survive
        a load/save cycle untouched.
        """

        config = cls()
        for key, value in data.items():
            attribute = _ATTRIBUTES.get(key)
            if attribute is None:
                config.extra[key] = copy.deepcopy(value)
                continue
            if attribute == "features":
                config.features = _coerce_features(value)
                continue
            setattr(config, attribute, copy.deepcopy(value))
        return config

    def to_dict(self, *, include_unset: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for item in fields(self):
            if item.name == "extra":
                continue
            value = getattr(self, item.name)
            if value is None and not include_unset:
                continue
            payload[_JSON_KEYS[item.name]] = copy.deepcopy(value)
        for key, value in self.extra.items():
            payload.setdefault(key, copy.deepcopy(value))
        return payload

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the persisted shape, safe to hand to listeners."""

        return self.to_dict()

    def copy(self) -> "AgentConfig":
        return copy.deepcopy(self)

    def get(self, key: str) -> Any:
        """Read a field by its JSON key."""

        attribute = _ATTRIBUTES.get(key)
        if attribute is None:
            return self.extra.get(key)
        return getattr(self, attribute)


def _coerce_features(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return copy.deepcopy(cast(Dict[str, Any], value))
    if isinstance(value, list):
        # Older agent files list feature names without parameters.
        return {str(name): None for name in cast(List[Any], value)}
    return {}


def merge_update(config: AgentConfig, update: Optional[Mapping[str, Any]]) -> List[str]:
    """Overwrite the fields named in ``update`` whose value is not null.

    Only :data:`UPDATABLE_FIELDS` are considered; every other field of
    ``config`` is left as it was. Returns the JSON keys that were written.
    """

    if not update:
        return []
    written: List[str] = []
    for key in UPDATABLE_FIELDS:
        if key not in update:
            continue
        value = update[key]
        if value is None:
            continue
        setattr(config, _ATTRIBUTES[key], copy.deepcopy(value))
        written.append(key)
    return written


def drop_unset_features(update: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a copy of ``update`` without null feature entries.

    Null entries mean "not chosen this turn" and must not replace existing
    feature parameters.
    """

    if update is None:
        return None
    cleaned = copy.deepcopy(dict(update))
    features = cleaned.get("features")
    if isinstance(features, dict):
        feature_map = cast(Dict[str, Any], features)
        chosen = {
            name: value
            for name, value in feature_map.items()
            if value is not None
        }
        if chosen:
            cleaned["features"] = chosen
        else:
            del cleaned["features"]
    return cleaned


def prompt_state(config: AgentConfig) -> Dict[str, Any]:
    """Subset of ``config`` shown to the model as the initial state.

    Asset references can be multi-megabyte data URLs, so they are never
    included.
    """

    return {key: copy.deepcopy(config.get(key)) for key in UPDATABLE_FIELDS}


def ensure_defaults(config: AgentConfig) -> AgentConfig:
    """Return a copy of ``config`` with every required field populated."""

    result = config.copy()
    if not result.name:
        suffix = random.randint(10000, 99999)
        result.name = f"AI Agent {suffix}"
    if not result.description:
        result.description = "Created by the AI Agent SDK"
    if not result.bio:
        result.bio = "A cool AI"
    if not result.model:
        result.model = DEFAULT_MODELS[0]
    if not result.small_model:
        result.small_model = DEFAULT_SMALL_MODELS[0]
    if not result.large_model:
        result.large_model = DEFAULT_LARGE_MODELS[0]
    if not result.preview_url:
        result.preview_url = ""
    if not result.avatar_url:
        result.avatar_url = ""
    if not result.homespace_url:
        result.homespace_url = ""
    if not result.voice_endpoint:
        result.voice_endpoint = DEFAULT_VOICE_ENDPOINT
    return result
