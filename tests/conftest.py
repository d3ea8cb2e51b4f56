"""Fixtures compartilhadas: provedor roteirizado e settings isolados."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from rotaflow.ai.contracts.provider import GenerateMessageInput, GenerateMessageOutput
from rotaflow.config.settings import Settings, get_settings
from rotaflow.domain.protocols import AiProvider

Scripted = (
    GenerateMessageOutput | dict[str, Any] | Exception | Callable[[GenerateMessageInput], Any]
)


class MockProvider(AiProvider):
    """Provedor de teste: devolve respostas na ordem em que foram enfileiradas.

    Cada item pode ser GenerateMessageOutput, dict (vira `structured`),
    Exception (é lançada) ou callable(request). Sem itens restantes, responde
    `{"message": "ok"}`.
    """

    name = "mock"

    def __init__(self, responses: list[Scripted] | None = None) -> None:
        self.responses: list[Scripted] = list(responses or [])
        self.requests: list[GenerateMessageInput] = []

    def queue(self, *responses: Scripted) -> None:
        self.responses.extend(responses)

    @property
    def schema_names(self) -> list[str | None]:
        return [r.parameters.schema_name if r.parameters else None for r in self.requests]

    async def generate_message(self, request: GenerateMessageInput) -> GenerateMessageOutput:
        self.requests.append(request)
        if not self.responses:
            return GenerateMessageOutput(message="ok", structured={"message": "ok"})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item) and not isinstance(item, GenerateMessageOutput):
            item = item(request)
        if isinstance(item, dict):
            return GenerateMessageOutput(message=str(item.get("message") or ""), structured=item)
        return item


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(environment="test", auto_save_enabled=False)


@pytest.fixture()
def provider() -> MockProvider:
    return MockProvider()
