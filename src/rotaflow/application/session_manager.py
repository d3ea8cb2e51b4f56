"""SessionManager — ciclo de vida de sessão (load/create, histórico, persist).

Sem `PersistenceManager` as sessões vivem só em memória do processo
(útil para testes e execuções efêmeras). Com persistência o store é a única
fonte de verdade: nada fica retido no processo entre turnos, e o histórico
local só é mantido quando não há store de mensagens.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rotaflow.application.persistence import PersistenceManager
from rotaflow.domain.history import HistoryItem
from rotaflow.domain.session import Session, create_session
from rotaflow.observability.logging import get_logger
from rotaflow.utils.ids import new_session_id


class SessionManager:
    """Gerencia sessões e o histórico associado a cada uma."""

    def __init__(
        self,
        persistence: PersistenceManager | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._persistence = persistence
        self._logger = logger or get_logger(__name__)
        self._sessions: dict[str, Session] = {}
        self._histories: dict[str, list[HistoryItem]] = {}

    @property
    def persistence(self) -> PersistenceManager | None:
        return self._persistence

    @property
    def _keeps_local_history(self) -> bool:
        return self._persistence is None or not self._persistence.has_message_store

    async def get_or_create(
        self, session_id: str | None = None, metadata: Mapping[str, Any] | None = None
    ) -> Session:
        """Recupera sessão existente (store ou memória local) ou cria nova."""
        if session_id:
            if self._persistence is not None:
                loaded = await self._persistence.load_session_state(session_id)
                if loaded is not None:
                    self._logger.debug("session_loaded", extra={"session_id": session_id[:8]})
                    return loaded
            else:
                cached = self._sessions.get(session_id)
                if cached is not None:
                    return cached

        session = self.update(create_session(session_id or new_session_id(), metadata))
        self._logger.info("session_created", extra={"session_id": session.id[:8]})
        return session

    def update(self, session: Session) -> Session:
        """Guarda a sessão em memória local (apenas sem persistência)."""
        if self._persistence is None:
            self._sessions[session.id] = session
        return session

    async def add_message(self, session_id: str, item: HistoryItem) -> None:
        if self._keeps_local_history:
            self._histories.setdefault(session_id, []).append(item)
        if self._persistence is not None:
            await self._persistence.save_message(session_id, item)

    async def add_messages(self, session_id: str, items: Sequence[HistoryItem]) -> None:
        for item in items:
            await self.add_message(session_id, item)

    async def get_history(self, session_id: str, limit: int | None = None) -> list[HistoryItem]:
        """Histórico da sessão; o store de mensagens tem precedência."""
        if self._persistence is not None and self._persistence.has_message_store:
            return await self._persistence.load_history(session_id, limit=limit)
        items = self._histories.get(session_id, [])
        return list(items[-limit:]) if limit else list(items)

    async def persist(self, session: Session) -> bool:
        """Persiste a sessão; falha é registrada e o fluxo continua."""
        self.update(session)
        if self._persistence is None:
            return False
        try:
            await self._persistence.save_session_state(session.id, session)
        except Exception as e:  # noqa: BLE001 - persistência não derruba o turno
            self._logger.error(
                "session_persist_failed",
                extra={"session_id": session.id[:8], "error": str(e)},
            )
            return False
        return True

    async def reset(self, session_id: str) -> Session:
        """Descarta estado e histórico, devolvendo sessão vazia com o mesmo id."""
        self._histories.pop(session_id, None)
        if self._persistence is not None:
            await self._persistence.delete_session(session_id)
        session = self.update(create_session(session_id))
        self._logger.info("session_reset", extra={"session_id": session_id[:8]})
        return session

    async def delete(self, session_id: str) -> bool:
        existed = self._sessions.pop(session_id, None) is not None
        self._histories.pop(session_id, None)
        if self._persistence is not None:
            existed = await self._persistence.delete_session(session_id) or existed
        return existed
