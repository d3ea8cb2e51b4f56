"""Protocolos de domínio para persistência de sessão e mensagens (async)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rotaflow.domain.history import HistoryItem
    from rotaflow.domain.session import Session


class AsyncSessionStoreProtocol(ABC):
    """Contrato mínimo assíncrono para armazenamento de Session."""

    @abstractmethod
    async def save(self, session: Session, ttl_seconds: int = 7200) -> None: ...

    @abstractmethod
    async def load(self, session_id: str) -> Session | None: ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool: ...

    @abstractmethod
    async def exists(self, session_id: str) -> bool: ...


class AsyncMessageStoreProtocol(ABC):
    """Contrato mínimo assíncrono para histórico de mensagens por sessão."""

    @abstractmethod
    async def append(self, session_id: str, item: HistoryItem) -> None: ...

    @abstractmethod
    async def find_by_session_id(
        self, session_id: str, limit: int | None = None
    ) -> list[HistoryItem]: ...

    @abstractmethod
    async def delete_by_session_id(self, session_id: str) -> int: ...
