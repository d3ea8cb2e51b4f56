"""Persistência de sessão e histórico de mensagens.

Camada fina sobre os stores (memória/Redis): aplica o TTL configurado e
registra eventos estruturados. Erros do store propagam como
`SessionStoreError`; quem decide se o turno continua é o chamador.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from rotaflow.domain.errors import SessionStoreError
from rotaflow.domain.history import HistoryItem
from rotaflow.domain.protocols import AsyncMessageStoreProtocol, AsyncSessionStoreProtocol
from rotaflow.domain.session import Session
from rotaflow.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class PersistenceManager:
    """Salva/carrega sessões e mensagens por `session_id`."""

    def __init__(
        self,
        session_store: AsyncSessionStoreProtocol,
        message_store: AsyncMessageStoreProtocol | None = None,
        ttl_seconds: int = 7200,
    ) -> None:
        self._sessions = session_store
        self._messages = message_store
        self._ttl_seconds = ttl_seconds

    @property
    def has_message_store(self) -> bool:
        return self._messages is not None

    async def save_session_state(self, session_id: str, session: Session) -> None:
        """Persiste a sessão; o id informado prevalece sobre `session.id`."""
        if session.id != session_id:
            session = session.model_copy(update={"id": session_id})
        try:
            await self._sessions.save(session, ttl_seconds=self._ttl_seconds)
        except SessionStoreError:
            raise
        except Exception as e:
            logger.error(
                "session_save_failed",
                extra={"session_id": session_id[:8], "error_type": type(e).__name__},
            )
            raise SessionStoreError(f"Failed to save session {session_id[:8]}") from e
        logger.debug("session_saved", extra={"session_id": session_id[:8]})

    async def load_session_state(self, session_id: str) -> Session | None:
        return await self._sessions.load(session_id)

    async def save_message(self, session_id: str, item: HistoryItem) -> None:
        if self._messages is None:
            return
        await self._messages.append(session_id, item)

    async def save_messages(self, session_id: str, items: Iterable[HistoryItem]) -> None:
        for item in items:
            await self.save_message(session_id, item)

    async def load_history(self, session_id: str, limit: int | None = None) -> list[HistoryItem]:
        if self._messages is None:
            return []
        return await self._messages.find_by_session_id(session_id, limit=limit)

    async def delete_session(self, session_id: str) -> bool:
        """Remove sessão e mensagens; True se a sessão existia."""
        deleted = await self._sessions.delete(session_id)
        if self._messages is not None:
            removed = await self._messages.delete_by_session_id(session_id)
            logger.debug(
                "session_messages_deleted",
                extra={"session_id": session_id[:8], "count": removed},
            )
        logger.info("session_deleted", extra={"session_id": session_id[:8], "existed": deleted})
        return deleted
