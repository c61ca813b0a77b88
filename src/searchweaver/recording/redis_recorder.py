"""Redis-based event recorder.

Optional companion to the file recorder for deployments where several API instances need to read
the same runs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

import redis

from searchweaver.events import RunEvent
from searchweaver.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RedisEventRecorder:
    """Append-only recorder storing events in a Redis list."""

    redis_url: str
    key_prefix: str
    run_id: str
    ttl_seconds: int = 60 * 60 * 24 * 7
    client: redis.Redis | None = None

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = redis.Redis.from_url(self.redis_url, decode_responses=True)
        self._events_key = f"{self.key_prefix}:run:{self.run_id}:events"
        self._meta_key = f"{self.key_prefix}:run:{self.run_id}:meta"

    def append(self, event: RunEvent) -> None:
        """Append an event and refresh the TTL.

        Redis errors are logged, not raised: the file recorder stays the source of truth.
        """

        line = json.dumps(event.model_dump(mode="json"), ensure_ascii=False)
        pipe = self.client.pipeline()
        pipe.rpush(self._events_key, line)
        pipe.expire(self._events_key, self.ttl_seconds)
        try:
            pipe.execute()
        except redis.RedisError as e:
            logger.warning("Redis append failed", extra={"seq": event.seq, "error": str(e)})

    def set_meta(self, meta: dict[str, str]) -> None:
        if not meta:
            return
        pipe = self.client.pipeline()
        pipe.hset(self._meta_key, mapping=meta)
        pipe.expire(self._meta_key, self.ttl_seconds)
        pipe.execute()

    def exists(self) -> bool:
        return bool(self.client.exists(self._events_key))

    def iter_events(self) -> list[RunEvent]:
        lines = self.client.lrange(self._events_key, 0, -1)
        return [RunEvent.model_validate_json(line) for line in lines]
