"""Implementação de AsyncSessionStore em memória (apenas dev/testes)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from rotaflow.domain.protocols import AsyncSessionStoreProtocol
from rotaflow.observability.logging import get_logger

if TYPE_CHECKING:
    from rotaflow.domain.session import Session

logger: logging.Logger = get_logger(__name__)


class InMemorySessionStore(AsyncSessionStoreProtocol):
    """Armazenamento em memória com TTL (não usar em produção)."""

    def __init__(self) -> None:
        self._sessions: dict[str, tuple[Session, float]] = {}

    async def save(self, session: Session, ttl_seconds: int = 7200) -> None:
        expire_at = datetime.now(tz=UTC).timestamp() + ttl_seconds
        self._sessions[session.id] = (session, expire_at)
        logger.debug(
            "session_saved_memory",
            extra={"session_id": session.id[:8] + "...", "ttl_seconds": ttl_seconds},
        )

    async def load(self, session_id: str) -> Session | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            logger.debug("session_not_found_memory", extra={"session_id": session_id[:8] + "..."})
            return None

        session, expire_at = entry
        if datetime.now(tz=UTC).timestamp() > expire_at:
            del self._sessions[session_id]
            logger.debug("session_expired_memory", extra={"session_id": session_id[:8] + "..."})
            return None
        return session

    async def delete(self, session_id: str) -> bool:
        if session_id in self._sessions:
            del self._sessions[session_id]
            logger.debug("session_deleted_memory", extra={"session_id": session_id[:8] + "..."})
            return True
        return False

    async def exists(self, session_id: str) -> bool:
        return await self.load(session_id) is not None
