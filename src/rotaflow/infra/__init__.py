"""Camada de infraestrutura: adapters de persistência.

- Session: InMemorySessionStore, RedisSessionStore, create_session_store
- Mensagens: InMemoryMessageStore, RedisMessageStore

Infraestrutura não decide regra de negócio; logs sem PII.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from rotaflow.domain.errors import SessionStoreError
from rotaflow.infra.message_store import InMemoryMessageStore, RedisMessageStore
from rotaflow.infra.session_store_memory import InMemorySessionStore
from rotaflow.infra.session_store_redis import RedisSessionStore
from rotaflow.observability.logging import get_logger

if TYPE_CHECKING:
    from rotaflow.config.settings import Settings
    from rotaflow.domain.protocols import AsyncSessionStoreProtocol

logger: logging.Logger = get_logger(__name__)


def create_session_store(
    settings: Settings, redis_client: Any | None = None
) -> AsyncSessionStoreProtocol:
    """Cria o store conforme `session_store_backend` (memory | redis)."""
    backend = settings.session_store_backend.lower()
    if backend == "memory":
        logger.info("session_store_created", extra={"backend": "memory"})
        return InMemorySessionStore()
    if backend == "redis":
        if redis_client is None:
            if not settings.redis_url:
                raise SessionStoreError("ROTAFLOW_REDIS_URL is required for redis backend")
            from redis import asyncio as aioredis

            redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
        logger.info("session_store_created", extra={"backend": "redis"})
        return RedisSessionStore(redis_client)
    raise SessionStoreError(f"Unknown session store backend: {settings.session_store_backend}")


__all__ = [
    "InMemoryMessageStore",
    "InMemorySessionStore",
    "RedisMessageStore",
    "RedisSessionStore",
    "SessionStoreError",
    "create_session_store",
]
