"""Persistence for agent files and archived interview sessions."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, cast
from uuid import uuid4

import redis
from redis import Redis
from redis.exceptions import RedisError

from .agent_config import AgentConfig
from .config import InterviewMode
from .maf_client import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_AGENT_FILENAME = "agent.json"


def _timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class AgentRepository:
    """Reads and writes agent JSON and archives sessions to JSONL + Redis."""

    def __init__(
        self,
        *,
        output_dir: Path,
        archive_path: Path,
        redis_url: Optional[str] = None,
    ) -> None:
        self._output_dir = output_dir
        self._archive_path = archive_path
        self._redis_url = redis_url
        self._redis: Optional[Redis] = None

    @property
    def archive_path(self) -> Path:
        return self._archive_path

    def default_agent_path(self) -> Path:
        return self._output_dir / DEFAULT_AGENT_FILENAME

    def _get_redis(self) -> Optional[Redis]:
        if not self._redis_url:
            return None
        if self._redis is None:
            try:
                self._redis = redis.from_url(  # type: ignore[call-overload]
                    self._redis_url,
                    decode_responses=True,
                )
            except RedisError as exc:  # pragma: no cover - network guarded
                logger.warning("Redis connection failed: %s", exc)
                self._redis = None
        return self._redis

    @staticmethod
    def load_agent(path: Path) -> AgentConfig:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Agent file {path} must contain a JSON object.")
        return AgentConfig.from_dict(cast(Dict[str, Any], raw))

    def save_agent(self, config: AgentConfig, path: Optional[Path] = None) -> Path:
        target = path or self.default_agent_path()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            json.dumps(config.to_dict(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        return target

    def record_session(
        self,
        *,
        config: AgentConfig,
        messages: Sequence[ChatMessage],
        mode: InterviewMode,
        agent_path: Optional[Path] = None,
    ) -> str:
        """Archive one finished interview and return its record id."""

        created_at = datetime.now(timezone.utc)
        record_id = "agent-{}-{}".format(
            created_at.strftime("%Y%m%d%H%M%S"),
            uuid4().hex[:6],
        )
        lines = self._format_jsonl(
            record_id=record_id,
            created_at=created_at,
            messages=messages,
            mode=mode,
            config=config,
            agent_path=agent_path,
        )
        self._archive_path.parent.mkdir(parents=True, exist_ok=True)
        with self._archive_path.open("a", encoding="utf-8") as handle:
            for entry in lines:
                handle.write(entry + "\n")

        client = self._get_redis()
        if client:
            key = f"agent-session:{record_id}"
            record: Dict[str, Any] = {
                "id": record_id,
                "mode": mode.value,
                "created_at": created_at.isoformat(),
                "agent_name": config.name,
                "agent_path": str(agent_path) if agent_path else None,
                "turn_count": sum(1 for m in messages if m.role == "assistant"),
                "messages": [message.to_dict() for message in messages],
            }
            try:
                client.set(key, json.dumps(record, ensure_ascii=False))
                client.zadd(
                    "agent-sessions:index",
                    {record_id: created_at.timestamp()},
                )
            except RedisError as exc:  # pragma: no cover - best effort
                logger.warning("Redis persistence failed for %s: %s", key, exc)

        return record_id

    @staticmethod
    def _format_jsonl(
        *,
        record_id: str,
        created_at: datetime,
        messages: Sequence[ChatMessage],
        mode: InterviewMode,
        config: AgentConfig,
        agent_path: Optional[Path],
    ) -> List[str]:
        # Asset references are often data URLs; keep them out of the archive.
        summary = config.to_dict()
        for key in ("previewUrl", "avatarUrl", "homespaceUrl"):
            if summary.get(key):
                summary[key] = "<asset>"
        meta: Dict[str, Dict[str, Any]] = {
            "_meta": {
                "session_id": record_id,
                "ts": _timestamp(created_at),
                "n_records": len(messages) + 1,
                "mode": mode.value,
                "agent_path": str(agent_path) if agent_path else None,
            }
        }
        lines = [json.dumps(meta, ensure_ascii=False)]
        for index, message in enumerate(messages):
            entry: Dict[str, Any] = {
                "speaker": message.role,
                "message": message.content,
                "index": index,
            }
            lines.append(json.dumps(entry, ensure_ascii=False))
        lines.append(
            json.dumps({"speaker": "result", "agent": summary}, ensure_ascii=False)
        )
        return lines
