"""Prompt scaffolding for the agent configuration interview."""

from __future__ import annotations

import json
from string import Template
from typing import Any, Mapping

from .config import InterviewMode
from .features import FeatureSchema

INTERACTIVE_QUESTION = "What do you want your agent to do?"
EDIT_QUESTION = "What edits do you want to make?"

INTERACTOR_PREAMBLE = """
You are an interactive configuration assistant designed to update a JSON configuration object on behalf of the user.
Prompt the user for a question you need answered to update the configuration object.
Be informal and succinct; do not directly ask for the fields. Hide the complexity and internal state, and auto-fill details where you can.
Feel free to use artistic license or ask clarifying questions.

Reply with a JSON object including a response to the user, an optional update object to merge with the existing one, and a done flag when you think it's time to end the conversation.
""".strip()

AGENT_INSTRUCTIONS = Template(
    """
Configure an AI agent as specified by the user.

`name`, `bio`, `description`, and `visualDescription` describe the character.
`bio` describes the personality and character traits of the agent.
`description` explains why other agents or users would want to interact with this agent. Keep it intriguing and concise.
`visualDescription` visually describes the character without referring to their pose or emotion. This is an image prompt to use for an image generator. Update it whenever the character's visual description changes.
e.g. 'girl with medium blond hair and blue eyes, purple dress, green hoodie, jean shorts, sneakers'
`homespaceDescription` visually describes the character's homespace. This is also an image prompt, meant to describe the natural habitat of the character. Update it whenever the character's homespace changes.
e.g. 'neotokyo, sakura trees, neon lights, path, ancient ruins, jungle, lush curved vine plants'
`private` is a boolean that determines whether the agent is private (true) or public (false).

Do not use placeholder values for fields and do not copy the above examples. Instead, make up something unique and appropriate for the character.
$done_guidance
""".strip()
)

AUTO_DONE_GUIDANCE = "When you think the session is over, set the `done` flag."
CONFIRM_DONE_GUIDANCE = (
    "When you think the session is over, then set the `done` flag. "
    "You might want to confirm with the user beforehand."
)

JSON_REPLY_INSTRUCTIONS = Template(
    """
Respond ONLY with a single JSON object that validates against the JSON Schema below. Do not wrap the JSON in markdown fences or add commentary.
$schema
""".strip()
)


def render_feature_catalog(feature_schema: FeatureSchema) -> str:
    """Describe the offered features for the system prompt."""

    if feature_schema.restricted:
        header = "The agent is given the following features:"
    else:
        header = "The available features are:"
    blocks = [
        f"# {spec.name}\n{spec.description or 'Description not available.'}"
        for spec in feature_schema.offered
    ]
    return "\n".join([header, *blocks])


def build_agent_instructions(mode: InterviewMode, feature_schema: FeatureSchema) -> str:
    done_guidance = (
        AUTO_DONE_GUIDANCE if mode is InterviewMode.AUTO else CONFIRM_DONE_GUIDANCE
    )
    instructions = AGENT_INSTRUCTIONS.substitute(done_guidance=done_guidance)
    return f"{instructions}\n\n{render_feature_catalog(feature_schema)}"


def build_interactor_system_prompt(
    instructions: str,
    initial_state: Mapping[str, Any],
) -> str:
    state = json.dumps(initial_state, indent=2, ensure_ascii=False)
    return (
        f"{INTERACTOR_PREAMBLE}\n\n"
        f"# Instructions\n{instructions}\n\n"
        f"# Initial state\n{state}"
    )


def build_json_reply_instructions(output_schema: Mapping[str, Any]) -> str:
    schema = json.dumps(output_schema, indent=2, ensure_ascii=False)
    return JSON_REPLY_INSTRUCTIONS.substitute(schema=schema)


def opening_question(mode: InterviewMode) -> str | None:
    """Question asked before any answer, or ``None`` when the caller leads."""

    if mode is InterviewMode.INTERACTIVE:
        return INTERACTIVE_QUESTION
    if mode is InterviewMode.EDIT:
        return EDIT_QUESTION
    return None
