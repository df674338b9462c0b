"""Feature catalog and the schema offered to the model for ``features``."""

from __future__ import annotations

import abc
import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, cast

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from .agent_config import DEFAULT_VOICE_ENDPOINT


class FeatureConfigurationError(ValueError):
    """Raised when a session is configured with an unusable feature set."""


def _empty_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass(frozen=True, slots=True)
class FeatureSpec:
    """One optional agent capability and the shape of its parameters."""

    name: str
    description: str = ""
    parameter_schema: Mapping[str, Any] = field(default_factory=_empty_schema)
    dev: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureSpec":
        name = str(data.get("name", "")).strip()
        if not name:
            raise FeatureConfigurationError("Feature entry is missing a name.")
        schema = (
            data.get("parameterSchema")
            or data.get("schema")
            or data.get("parameters")
            or _empty_schema()
        )
        if not isinstance(schema, dict):
            raise FeatureConfigurationError(
                f"Feature '{name}' parameter schema must be an object."
            )
        description = data.get("description") or ""
        return cls(
            name=name,
            description=str(description).strip(),
            parameter_schema=copy.deepcopy(cast(Dict[str, Any], schema)),
            dev=bool(data.get("dev", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameterSchema": copy.deepcopy(dict(self.parameter_schema)),
        }


@dataclass(frozen=True, slots=True)
class FeatureSchema:
    """Allowed shape of the ``features`` map for one session.

    ``offered`` lists the features the model may configure. ``restricted``
    is true when the caller narrowed the catalog to a subset.
    """

    offered: Tuple[FeatureSpec, ...]
    restricted: bool
    schema: Dict[str, Any]
    validator: Draft202012Validator

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.offered)

    def errors(self, features: Any) -> List[str]:
        return [error.message for error in self.validator.iter_errors(features)]


def build_feature_schema(
    catalog: Sequence[FeatureSpec],
    selected: Optional[Iterable[str]] = None,
) -> FeatureSchema:
    """Build the ``features`` schema from a catalog snapshot.

    With no selected names every cataloged feature is offered; otherwise only
    the selected ones are. Unknown selected names and invalid parameter
    schemas raise :class:`FeatureConfigurationError` immediately.
    """

    by_name: Dict[str, FeatureSpec] = {}
    for spec in catalog:
        by_name.setdefault(spec.name, spec)

    selected_names: List[str] = []
    for name in selected or ():
        if name not in selected_names:
            selected_names.append(name)
    unknown = [name for name in selected_names if name not in by_name]
    if unknown:
        raise FeatureConfigurationError(
            "Invalid features specified: {}".format(", ".join(unknown))
        )

    restricted = bool(selected_names)
    if restricted:
        offered = tuple(by_name[name] for name in selected_names)
    else:
        offered = tuple(by_name.values())

    properties: Dict[str, Any] = {}
    for spec in offered:
        parameter_schema = copy.deepcopy(dict(spec.parameter_schema))
        try:
            Draft202012Validator.check_schema(parameter_schema)
        except SchemaError as exc:
            raise FeatureConfigurationError(
                f"Feature '{spec.name}' has an invalid parameter schema: "
                f"{exc.message}"
            ) from exc
        properties[spec.name] = {
            "anyOf": [parameter_schema, {"type": "null"}],
        }
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    return FeatureSchema(
        offered=offered,
        restricted=restricted,
        schema=schema,
        validator=Draft202012Validator(schema),
    )


class FeatureRegistry(abc.ABC):
    """Source of feature specs; read once per session."""

    @abc.abstractmethod
    async def get_all_features(self) -> List[FeatureSpec]:
        raise NotImplementedError


class StaticFeatureRegistry(FeatureRegistry):
    """Registry backed by an in-memory list."""

    def __init__(self, specs: Iterable[FeatureSpec]) -> None:
        self._specs = list(specs)

    @classmethod
    def from_json_file(cls, path: Path) -> "StaticFeatureRegistry":
        """Load ``[{name, description, parameterSchema}, ...]`` from disk."""

        raw = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = cast(Dict[str, Any], raw).get("features", [])
        if not isinstance(raw, list):
            raise FeatureConfigurationError(
                f"Feature catalog {path} must contain a list of features."
            )
        specs = [
            FeatureSpec.from_dict(cast(Mapping[str, Any], entry))
            for entry in cast(List[Any], raw)
            if isinstance(entry, dict)
        ]
        return cls(specs)

    async def get_all_features(self) -> List[FeatureSpec]:
        return list(self._specs)


DEFAULT_VOICES: Tuple[Tuple[str, str, str], ...] = (
    ("Kaido", "elevenlabs:kadio:YkP683vAWY3rTjcuq2hX", "Teenage anime boy"),
    ("Drake", "elevenlabs:drake:1thOSihlbbWeiCGuN5Nw", "Anime male"),
    ("Terrorblade", "elevenlabs:terrorblade:lblRnHLq4YZ8wRRUe8ld", "Monstrous male"),
    ("Scillia", DEFAULT_VOICE_ENDPOINT, "Teenage anime girl"),
    ("Mommy", "elevenlabs:mommy:jSd2IJ6Fdd2bD4TaIeUj", "Anime female"),
    ("Uni", "elevenlabs:uni:PSAakCTPE63lB4tP9iNQ", "Waifu girl"),
)
CURRENCIES: Tuple[str, ...] = ("usd",)
INTERVALS: Tuple[str, ...] = ("month", "year", "week", "day")


def _voice_lines() -> str:
    return "\n".join(
        f"* {json.dumps(name)}: {endpoint}" for name, endpoint, _ in DEFAULT_VOICES
    )


def _store_item_schema() -> Dict[str, Any]:
    payment_props = {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "description": {"type": "string"},
            "amount": {"type": "integer"},
            "currency": {"enum": list(CURRENCIES)},
        },
        "required": ["name", "amount", "currency"],
    }
    subscription_props = {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "description": {"type": "string"},
            "amount": {"type": "integer"},
            "currency": {"enum": list(CURRENCIES)},
            "interval": {"enum": list(INTERVALS)},
            "intervalCount": {"type": "number"},
        },
        "required": ["name", "amount", "currency", "interval", "intervalCount"],
    }
    return {
        "type": "array",
        "items": {
            "anyOf": [
                {
                    "type": "object",
                    "properties": {
                        "type": {"const": "payment"},
                        "props": payment_props,
                    },
                    "required": ["type", "props"],
                },
                {
                    "type": "object",
                    "properties": {
                        "type": {"const": "subscription"},
                        "props": subscription_props,
                    },
                    "required": ["type", "props"],
                },
            ]
        },
    }


BUILTIN_FEATURES: Tuple[FeatureSpec, ...] = (
    FeatureSpec(
        name="tts",
        description="Text to speech.\nAvailable voice endpoints:\n" + _voice_lines(),
        parameter_schema={
            "type": "object",
            "properties": {
                "voiceEndpoint": {
                    "enum": [endpoint for _, endpoint, _ in DEFAULT_VOICES],
                },
            },
            "required": ["voiceEndpoint"],
        },
    ),
    FeatureSpec(
        name="rateLimit",
        description=(
            "Agent is publicly available.\n"
            "The rate limit is `maxUserMessages` messages per "
            "`maxUserMessagesTime` milliseconds.\n"
            "When the rate limit is exceeded, the agent will respond with the "
            "static `message`.\n"
            "If either `maxUserMessages` or `maxUserMessagesTime` is not "
            "provided or zero, the rate limit is disabled."
        ),
        parameter_schema={
            "type": "object",
            "properties": {
                "maxUserMessages": {"type": "number"},
                "maxUserMessagesTime": {"type": "number"},
                "message": {"type": "string"},
            },
        },
    ),
    FeatureSpec(
        name="discord",
        description=(
            "Add Discord integration to the agent. Add this feature only when "
            "the user explicitly requests it and provides a bot token.\n\n"
            "The user should follow these instructions to set up their bot "
            "(you can instruct them to do this):\n"
            "- Create a bot application at "
            "https://discord.com/developers/applications and note the "
            "CLIENT_ID (also called \"application id\")\n"
            "- Enable Privileged Gateway Intents at "
            "https://discord.com/developers/applications/CLIENT_ID/bot\n"
            "- Add the bot to your server at "
            "https://discord.com/oauth2/authorize/?permissions=-2080908480"
            "&scope=bot&client_id=CLIENT_ID\n"
            "- Get the bot token at "
            "https://discord.com/developers/applications/CLIENT_ID/bot\n"
            "The token is required and must be provided.\n\n"
            "`channels` is a list of channel names (text or voice) that the "
            "agent should join."
        ),
        parameter_schema={
            "type": "object",
            "properties": {
                "token": {"type": "string"},
                "channels": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["token", "channels"],
        },
    ),
    FeatureSpec(
        name="twitterBot",
        description="Add a Twitter bot to the agent.\n\nThe API token is required.",
        parameter_schema={
            "type": "object",
            "properties": {"token": {"type": "string"}},
            "required": ["token"],
        },
    ),
    FeatureSpec(
        name="telnyx",
        description=(
            "Add Telnyx phone call/SMS support to the agent. Add this feature "
            "only when the user explicitly requests it and provides an api "
            "key.\n\nPhone number is optional, but if provided must be in "
            "+E.164 format (e.g. +14151234567)."
        ),
        parameter_schema={
            "type": "object",
            "properties": {
                "apiKey": {"type": "string"},
                "phoneNumber": {"type": "string"},
                "message": {"type": "boolean"},
                "voice": {"type": "boolean"},
            },
            "required": ["apiKey", "message", "voice"],
        },
        dev=True,
    ),
    FeatureSpec(
        name="storeItems",
        description=(
            "List of items that can be purchased from the agent, with "
            "associated prices.\n`amount` in cents (e.g. 100 = $1)."
        ),
        parameter_schema=_store_item_schema(),
        dev=True,
    ),
)


def builtin_registry(*, include_dev: bool = True) -> StaticFeatureRegistry:
    specs = [spec for spec in BUILTIN_FEATURES if include_dev or not spec.dev]
    return StaticFeatureRegistry(specs)
