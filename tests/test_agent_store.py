import json

import pytest
from redis.exceptions import RedisError

from agent_interview import agent_store
from agent_interview.agent_config import AgentConfig
from agent_interview.agent_store import AgentRepository
from agent_interview.config import InterviewMode
from agent_interview.maf_client import ChatMessage


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.values = {}
        self.index = {}

    def set(self, key, value):
        if self.fail:
            raise RedisError("connection refused")
        self.values[key] = value

    def zadd(self, key, mapping):
        self.index.setdefault(key, {}).update(mapping)


MESSAGES = [
    ChatMessage(role="system", content="instructions"),
    ChatMessage(role="user", content="a pirate"),
    ChatMessage(role="assistant", content='{"response": "", "done": true}'),
]


def _repository(tmp_path, redis_url=None):
    return AgentRepository(
        output_dir=tmp_path / "out",
        archive_path=tmp_path / "out" / "sessions.jsonl",
        redis_url=redis_url,
    )


def test_save_and_load_agent(tmp_path):
    repository = _repository(tmp_path)
    config = AgentConfig(name="Pete", features={"tts": {"voiceEndpoint": "v"}})

    path = repository.save_agent(config)
    loaded = repository.load_agent(path)

    assert path == tmp_path / "out" / "agent.json"
    assert json.loads(path.read_text(encoding="utf-8"))["name"] == "Pete"
    assert loaded.features == {"tts": {"voiceEndpoint": "v"}}


def test_load_agent_rejects_non_objects(tmp_path):
    path = tmp_path / "agent.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError, match="JSON object"):
        AgentRepository.load_agent(path)


def test_record_session_appends_jsonl(tmp_path):
    repository = _repository(tmp_path)
    config = AgentConfig(name="Pete", preview_url="data:image/png;base64,AAAA")

    record_id = repository.record_session(
        config=config, messages=MESSAGES, mode=InterviewMode.AUTO
    )

    lines = [
        json.loads(line)
        for line in repository.archive_path.read_text(encoding="utf-8").splitlines()
    ]
    assert record_id.startswith("agent-")
    assert lines[0]["_meta"]["session_id"] == record_id
    assert lines[0]["_meta"]["mode"] == "auto"
    assert [line["speaker"] for line in lines[1:4]] == ["system", "user", "assistant"]
    assert lines[-1]["agent"]["name"] == "Pete"
    assert lines[-1]["agent"]["previewUrl"] == "<asset>"


def test_record_session_mirrors_to_redis(tmp_path, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(agent_store.redis, "from_url", lambda url, **kwargs: fake)
    repository = _repository(tmp_path, redis_url="redis://localhost:6379/0")

    record_id = repository.record_session(
        config=AgentConfig(name="Pete"), messages=MESSAGES, mode=InterviewMode.EDIT
    )

    stored = json.loads(fake.values[f"agent-session:{record_id}"])
    assert stored["agent_name"] == "Pete"
    assert stored["turn_count"] == 1
    assert record_id in fake.index["agent-sessions:index"]


def test_redis_failure_is_not_fatal(tmp_path, monkeypatch):
    monkeypatch.setattr(
        agent_store.redis, "from_url", lambda url, **kwargs: FakeRedis(fail=True)
    )
    repository = _repository(tmp_path, redis_url="redis://localhost:6379/0")

    record_id = repository.record_session(
        config=AgentConfig(name="Pete"), messages=MESSAGES, mode=InterviewMode.EDIT
    )

    assert record_id in repository.archive_path.read_text(encoding="utf-8")
