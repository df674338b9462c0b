import asyncio
import json

import pytest

from agent_interview.agent_config import AgentConfig
from agent_interview.events import InterviewEvent
from agent_interview.interactor import Interactor, InteractorClosedError
from agent_interview.maf_client import CompletionError

from .fakes import ScriptedCompletionClient, final_reply, turn_reply

OBJECT_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "bio": {"type": "string"},
        "features": {
            "type": "object",
            "properties": {
                "tts": {
                    "anyOf": [
                        {
                            "type": "object",
                            "properties": {"voiceEndpoint": {"type": "string"}},
                        },
                        {"type": "null"},
                    ]
                }
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


def _interactor(client, config=None, **kwargs):
    return Interactor(
        instructions="Configure an agent.",
        config=config or AgentConfig(),
        object_schema=OBJECT_SCHEMA,
        chat_client=client,
        **kwargs,
    )


def _record(interactor):
    events = {"processing": [], "message": []}
    interactor.events.subscribe(
        InterviewEvent.PROCESSING_STATE_CHANGE,
        lambda payload: events["processing"].append(payload.is_processing),
    )
    interactor.events.subscribe(InterviewEvent.MESSAGE, events["message"].append)
    return events


def test_write_merges_update_and_records_history():
    async def scenario():
        client = ScriptedCompletionClient(
            [turn_reply("What should it be called?", {"bio": "Grumpy pirate"})]
        )
        interactor = _interactor(client, AgentConfig(name="Pete"))
        events = _record(interactor)
        result = await interactor.write("A pirate bot")
        return interactor, events, result

    interactor, events, result = asyncio.run(scenario())

    assert result.response == "What should it be called?"
    assert result.done is False
    assert interactor.config.name == "Pete"
    assert interactor.config.bio == "Grumpy pirate"
    assert result.snapshot["bio"] == "Grumpy pirate"
    assert events["processing"] == [True, False]
    assert events["message"] == [result]
    roles = [message.role for message in interactor.messages]
    assert roles == ["system", "user", "assistant"]
    assert interactor.messages[1].content == "A pirate bot"
    assert json.loads(interactor.messages[2].content)["updateObject"] == {
        "bio": "Grumpy pirate"
    }


def test_system_prompt_carries_initial_state():
    client = ScriptedCompletionClient()
    interactor = _interactor(
        client,
        AgentConfig(name="Pete", preview_url="data:image/png;base64,AAAA"),
        user_prompt="Build a pirate bot",
    )

    system = interactor.messages[0].content
    assert "# Instructions\nConfigure an agent." in system
    assert '"name": "Pete"' in system
    assert "base64" not in system
    assert interactor.messages[1].content == "Build a pirate bot"


def test_empty_write_adds_no_user_message():
    async def scenario():
        client = ScriptedCompletionClient([turn_reply("Hello!")])
        interactor = _interactor(client)
        await interactor.write()
        return interactor

    interactor = asyncio.run(scenario())

    assert [message.role for message in interactor.messages] == ["system", "assistant"]


def test_null_feature_entries_do_not_clobber_existing_ones():
    async def scenario():
        client = ScriptedCompletionClient(
            [turn_reply("Done?", {"features": {"tts": None}})]
        )
        config = AgentConfig(features={"tts": {"voiceEndpoint": "elevenlabs:a"}})
        interactor = _interactor(client, config)
        await interactor.write("keep the voice")
        return interactor

    interactor = asyncio.run(scenario())

    assert interactor.config.features == {"tts": {"voiceEndpoint": "elevenlabs:a"}}


def test_end_forces_done_with_final_schema():
    async def scenario():
        client = ScriptedCompletionClient([final_reply({"name": "Pete", "bio": "Salty"})])
        interactor = _interactor(client)
        result = await interactor.end("wrap it up")
        return client, interactor, result

    client, interactor, result = asyncio.run(scenario())

    assert result.done is True
    assert result.response == ""
    assert result.update_object == {"name": "Pete", "bio": "Salty"}
    assert interactor.config.name == "Pete"
    _, schema = client.calls[0]
    assert schema["required"] == ["output"]


def test_schema_violation_rejects_turn_and_resets_processing():
    async def scenario():
        client = ScriptedCompletionClient([{"response": "Hi", "updateObject": None}])
        interactor = _interactor(client, AgentConfig(name="Pete"))
        events = _record(interactor)
        with pytest.raises(CompletionError, match="does not match"):
            await interactor.write("hello")
        return interactor, events

    interactor, events = asyncio.run(scenario())

    assert events["processing"] == [True, False]
    assert events["message"] == []
    assert interactor.is_processing is False
    assert interactor.config.name == "Pete"


def test_provider_failure_leaves_conversation_usable():
    async def scenario():
        client = ScriptedCompletionClient(
            [
                CompletionError("upstream unavailable", status=503, body="busy"),
                turn_reply("Second try worked", {"name": "Pete"}),
            ]
        )
        interactor = _interactor(client)
        failed = interactor.write("first")
        retried = interactor.write("second")
        with pytest.raises(CompletionError) as excinfo:
            await failed
        return excinfo.value, await retried, interactor

    error, result, interactor = asyncio.run(scenario())

    assert error.status == 503
    assert result.response == "Second try worked"
    assert interactor.config.name == "Pete"


def test_back_to_back_writes_do_not_interleave():
    async def scenario():
        seen_history = []

        def reply(label):
            def build(history, schema):
                seen_history.append([message.content for message in history])
                return turn_reply(label)

            return build

        client = ScriptedCompletionClient([reply("one"), reply("two")], delay=0.01)
        interactor = _interactor(client)
        first = interactor.write("first answer")
        second = interactor.write("second answer")
        results = await asyncio.gather(first, second)
        return [r.response for r in results], seen_history

    responses, seen_history = asyncio.run(scenario())

    assert responses == ["one", "two"]
    assert seen_history[0][-1] == "first answer"
    assert "second answer" not in seen_history[0]
    assert seen_history[1][-1] == "second answer"


def test_closed_interactor_rejects_queued_turns():
    async def scenario():
        client = ScriptedCompletionClient([turn_reply("never")])
        interactor = _interactor(client)
        interactor.close()
        with pytest.raises(InteractorClosedError):
            await interactor.write("too late")
        return client

    client = asyncio.run(scenario())

    assert client.calls == []
