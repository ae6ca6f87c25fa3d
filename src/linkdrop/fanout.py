"""Activity fan-out for observers of raw webhook traffic."""
from __future__ import annotations

import json
import logging
from typing import Any, List, Protocol, Tuple

from redis import Redis
from redis.exceptions import RedisError


logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "activity_event"


class Fanout(Protocol):
    def publish(self, topic: str, event_payload: dict[str, Any]) -> None:
        """Fire-and-forget publish."""


class InMemoryFanout:
    def __init__(self) -> None:
        self._events: List[Tuple[str, dict[str, Any]]] = []

    def publish(self, topic: str, event_payload: dict[str, Any]) -> None:
        self._events.append((topic, event_payload))

    def drain(self) -> list[Tuple[str, dict[str, Any]]]:
        out = list(self._events)
        self._events.clear()
        return out


class RedisFanout:
    """Publishes JSON payloads on a redis pub/sub channel per topic."""

    def __init__(self, redis: Redis, *, prefix: str = "linkdrop:") -> None:
        self._redis = redis
        self._prefix = prefix

    def channel(self, topic: str) -> str:
        return f"{self._prefix}{topic}"

    def publish(self, topic: str, event_payload: dict[str, Any]) -> None:
        message = json.dumps(event_payload, ensure_ascii=False, default=str)
        try:
            self._redis.publish(self.channel(topic), message)
        except RedisError:
            logger.warning(
                "fan-out publish failed",
                exc_info=True,
                extra={"ctx_code": "FANOUT_FAILED", "ctx_topic": topic},
            )
