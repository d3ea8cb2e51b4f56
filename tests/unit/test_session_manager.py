"""Testes do SessionManager (memória local ou persistência)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from rotaflow.application.persistence import PersistenceManager
from rotaflow.application.session_manager import SessionManager
from rotaflow.domain.history import user_message
from rotaflow.domain.session import create_session, merge_data
from rotaflow.infra.message_store import InMemoryMessageStore
from rotaflow.infra.session_store_memory import InMemorySessionStore


def _persistence(with_messages: bool = True) -> PersistenceManager:
    messages = InMemoryMessageStore() if with_messages else None
    return PersistenceManager(InMemorySessionStore(), messages)


class TestGetOrCreate:
    """Carregamento e criação de sessões."""

    @pytest.mark.asyncio
    async def test_creates_session_with_generated_id(self):
        """Sem id, uma nova sessão é criada com id gerado."""
        manager = SessionManager()

        session = await manager.get_or_create()

        assert session.id
        assert await manager.get_or_create(session.id) is session

    @pytest.mark.asyncio
    async def test_metadata_is_kept_on_new_session(self):
        """Metadata do chamador vai para a sessão criada."""
        session = await SessionManager().get_or_create("s1", {"channel": "web"})
        assert session.metadata.model_dump()["channel"] == "web"

    @pytest.mark.asyncio
    async def test_loads_from_persistence(self):
        """Sessão persistida é recuperada do store."""
        persistence = _persistence()
        await persistence.save_session_state("s1", merge_data(create_session("s1"), {"a": 1}))

        session = await SessionManager(persistence).get_or_create("s1")

        assert session.data == {"a": 1}

    @pytest.mark.asyncio
    async def test_store_is_read_instead_of_local_copy(self):
        """Com persistência, a sessão vem sempre do store, nunca de cópia local."""
        persistence = _persistence()
        manager = SessionManager(persistence)
        await manager.persist(create_session("s1"))
        await persistence.save_session_state("s1", merge_data(create_session("s1"), {"a": 2}))

        session = await manager.get_or_create("s1")

        assert session.data == {"a": 2}


class TestHistory:
    """Histórico local vs store de mensagens."""

    @pytest.mark.asyncio
    async def test_local_history_without_persistence(self):
        """Sem persistência o histórico fica no processo."""
        manager = SessionManager()
        await manager.add_messages("s1", [user_message("a"), user_message("b")])

        assert [m.content for m in await manager.get_history("s1")] == ["a", "b"]
        assert [m.content for m in await manager.get_history("s1", limit=1)] == ["b"]

    @pytest.mark.asyncio
    async def test_message_store_takes_precedence(self):
        """Com store de mensagens, o histórico vem do store."""
        persistence = _persistence()
        await persistence.save_message("s1", user_message("stored"))
        manager = SessionManager(persistence)

        assert [m.content for m in await manager.get_history("s1")] == ["stored"]

    @pytest.mark.asyncio
    async def test_message_store_keeps_no_local_history(self):
        """Com store de mensagens, nada é acumulado no processo."""
        manager = SessionManager(_persistence())

        await manager.add_messages("s1", [user_message("a"), user_message("b")])

        assert manager._histories == {}
        assert [m.content for m in await manager.get_history("s1")] == ["a", "b"]


class TestPersist:
    """persist/reset/delete."""

    @pytest.mark.asyncio
    async def test_no_session_retained_in_memory_with_store(self):
        """Sessões persistidas não ficam retidas no processo."""
        manager = SessionManager(_persistence())

        for idx in range(5):
            session = await manager.get_or_create(f"s{idx}")
            assert await manager.persist(merge_data(session, {"idx": idx})) is True

        assert manager._sessions == {}
        assert (await manager.get_or_create("s3")).data == {"idx": 3}

    @pytest.mark.asyncio
    async def test_persist_without_persistence_returns_false(self):
        """Sem persistência, persist só atualiza o cache."""
        manager = SessionManager()
        session = create_session("s1")

        assert await manager.persist(session) is False
        assert await manager.get_or_create("s1") is session

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged_and_swallowed(self):
        """Falha do store não derruba o turno."""
        store = AsyncMock()
        store.save.side_effect = RuntimeError("down")
        manager = SessionManager(PersistenceManager(store))

        assert await manager.persist(create_session("s1")) is False

    @pytest.mark.asyncio
    async def test_reset_returns_empty_session_with_same_id(self):
        """reset descarta dados e histórico."""
        persistence = _persistence()
        manager = SessionManager(persistence)
        await manager.persist(merge_data(create_session("s1"), {"a": 1}))
        await manager.add_message("s1", user_message("oi"))

        session = await manager.reset("s1")

        assert session.id == "s1"
        assert session.data == {}
        assert await manager.get_history("s1") == []
        assert await persistence.load_session_state("s1") is None

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self):
        """delete retorna True se a sessão existia em cache ou store."""
        manager = SessionManager(_persistence())
        await manager.persist(create_session("s1"))

        assert await manager.delete("s1") is True
        assert await manager.delete("s1") is False
