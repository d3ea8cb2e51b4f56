"""Implementação de AsyncSessionStore usando Redis (produção).

O cliente `redis.asyncio.Redis` é injetado; cada sessão é gravada como
JSON (pydantic) na chave ``session:{id}`` com TTL via SETEX.
"""

from __future__ import annotations

import logging
from typing import Any

from rotaflow.domain.errors import SessionStoreError
from rotaflow.domain.protocols import AsyncSessionStoreProtocol
from rotaflow.domain.session import Session
from rotaflow.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

KEY_PREFIX = "session:"


def session_key(session_id: str) -> str:
    return f"{KEY_PREFIX}{session_id}"


class RedisSessionStore(AsyncSessionStoreProtocol):
    """Armazenamento em Redis (async) para produção."""

    def __init__(self, redis_client: Any) -> None:
        self._redis = redis_client

    async def save(self, session: Session, ttl_seconds: int = 7200) -> None:
        payload = session.model_dump_json()
        try:
            await self._redis.setex(session_key(session.id), ttl_seconds, payload)
            logger.debug(
                "session_saved_redis",
                extra={"session_id": session.id[:8] + "...", "ttl_seconds": ttl_seconds},
            )
        except Exception as e:
            logger.error(
                "session_save_failed_redis",
                extra={"session_id": session.id[:8] + "...", "error": str(e)},
            )
            raise SessionStoreError(f"Redis save failed: {e}") from e

    async def load(self, session_id: str) -> Session | None:
        try:
            payload = await self._redis.get(session_key(session_id))
        except Exception as e:
            logger.error(
                "session_load_failed_redis",
                extra={"session_id": session_id[:8] + "...", "error": str(e)},
            )
            raise SessionStoreError(f"Redis load failed: {e}") from e

        if not payload:
            logger.debug("session_not_found_redis", extra={"session_id": session_id[:8] + "..."})
            return None
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")

        try:
            return Session.model_validate_json(payload)
        except ValueError as e:
            logger.error(
                "session_payload_invalid_redis",
                extra={"session_id": session_id[:8] + "...", "error_type": type(e).__name__},
            )
            raise SessionStoreError(f"Invalid session payload: {e}") from e

    async def delete(self, session_id: str) -> bool:
        try:
            deleted = await self._redis.delete(session_key(session_id))
        except Exception as e:
            logger.error(
                "session_delete_failed_redis",
                extra={"session_id": session_id[:8] + "...", "error": str(e)},
            )
            raise SessionStoreError(f"Redis delete failed: {e}") from e
        return bool(deleted)

    async def exists(self, session_id: str) -> bool:
        try:
            return bool(await self._redis.exists(session_key(session_id)))
        except Exception as e:
            logger.error(
                "session_exists_failed_redis",
                extra={"session_id": session_id[:8] + "...", "error": str(e)},
            )
            raise SessionStoreError(f"Redis exists failed: {e}") from e
