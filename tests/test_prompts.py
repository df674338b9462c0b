from agent_interview.config import InterviewMode
from agent_interview.features import FeatureSpec, build_feature_schema
from agent_interview.prompts import (
    AUTO_DONE_GUIDANCE,
    CONFIRM_DONE_GUIDANCE,
    INTERACTIVE_QUESTION,
    build_agent_instructions,
    build_interactor_system_prompt,
    opening_question,
    render_feature_catalog,
)

CATALOG = [
    FeatureSpec(name="tts", description="Text to speech."),
    FeatureSpec(name="discord"),
]


def test_catalog_lists_all_features_when_unrestricted():
    text = render_feature_catalog(build_feature_schema(CATALOG))

    assert text.splitlines()[0] == "The available features are:"
    assert "# tts\nText to speech." in text
    assert "# discord\nDescription not available." in text


def test_catalog_lists_only_selected_features():
    text = render_feature_catalog(build_feature_schema(CATALOG, ["tts"]))

    assert text.splitlines()[0] == "The agent is given the following features:"
    assert "discord" not in text


def test_done_guidance_depends_on_mode():
    schema = build_feature_schema(CATALOG)

    assert AUTO_DONE_GUIDANCE in build_agent_instructions(InterviewMode.AUTO, schema)
    assert CONFIRM_DONE_GUIDANCE in build_agent_instructions(
        InterviewMode.INTERACTIVE, schema
    )


def test_system_prompt_sections():
    prompt = build_interactor_system_prompt("Do things.", {"name": None})

    assert "# Instructions\nDo things." in prompt
    assert prompt.endswith('# Initial state\n{\n  "name": null\n}')


def test_opening_questions():
    assert opening_question(InterviewMode.INTERACTIVE) == INTERACTIVE_QUESTION
    assert opening_question(InterviewMode.AUTO) is None
    assert opening_question(InterviewMode.MANUAL) is None
