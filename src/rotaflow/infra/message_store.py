"""Histórico de mensagens por sessão (memória e Redis)."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from rotaflow.domain.errors import SessionStoreError
from rotaflow.domain.history import HistoryItem
from rotaflow.domain.protocols import AsyncMessageStoreProtocol
from rotaflow.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class InMemoryMessageStore(AsyncMessageStoreProtocol):
    """Lista de mensagens por sessão em memória (dev/testes)."""

    def __init__(self) -> None:
        self._messages: dict[str, list[HistoryItem]] = defaultdict(list)

    async def append(self, session_id: str, item: HistoryItem) -> None:
        self._messages[session_id].append(item)

    async def find_by_session_id(
        self, session_id: str, limit: int | None = None
    ) -> list[HistoryItem]:
        items = self._messages.get(session_id, [])
        return list(items[-limit:]) if limit else list(items)

    async def delete_by_session_id(self, session_id: str) -> int:
        return len(self._messages.pop(session_id, []))


class RedisMessageStore(AsyncMessageStoreProtocol):
    """Mensagens em lista Redis ``messages:{id}`` (RPUSH + EXPIRE)."""

    def __init__(self, redis_client: Any, ttl_seconds: int = 7200) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"messages:{session_id}"

    async def append(self, session_id: str, item: HistoryItem) -> None:
        key = self._key(session_id)
        try:
            await self._redis.rpush(key, item.model_dump_json())
            await self._redis.expire(key, self._ttl)
        except Exception as e:
            logger.error(
                "message_append_failed_redis",
                extra={"session_id": session_id[:8] + "...", "error": str(e)},
            )
            raise SessionStoreError(f"Redis append failed: {e}") from e

    async def find_by_session_id(
        self, session_id: str, limit: int | None = None
    ) -> list[HistoryItem]:
        start = -limit if limit else 0
        try:
            raw = await self._redis.lrange(self._key(session_id), start, -1)
        except Exception as e:
            logger.error(
                "message_load_failed_redis",
                extra={"session_id": session_id[:8] + "...", "error": str(e)},
            )
            raise SessionStoreError(f"Redis load failed: {e}") from e
        return [HistoryItem.model_validate_json(entry) for entry in raw or []]

    async def delete_by_session_id(self, session_id: str) -> int:
        key = self._key(session_id)
        try:
            count = await self._redis.llen(key)
            await self._redis.delete(key)
        except Exception as e:
            raise SessionStoreError(f"Redis delete failed: {e}") from e
        return int(count or 0)
