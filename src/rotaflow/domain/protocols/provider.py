"""Contrato do provedor de modelo (adapter externo)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rotaflow.ai.contracts.provider import (
        GenerateMessageInput,
        GenerateMessageOutput,
        StreamChunk,
    )


class AiProvider(ABC):
    """Provedor de geração de mensagens.

    Implementações são responsáveis por timeouts e transporte; o motor
    não impõe nenhum timeout implícito.
    """

    name: str = "provider"

    @abstractmethod
    async def generate_message(self, request: GenerateMessageInput) -> GenerateMessageOutput:
        """Gera uma mensagem (com `structured` quando há json_schema)."""
        ...

    async def generate_message_stream(
        self, request: GenerateMessageInput
    ) -> AsyncIterator[StreamChunk]:
        """Streaming padrão: um único chunk final a partir de generate_message."""
        from rotaflow.ai.contracts.provider import StreamChunk

        output = await self.generate_message(request)
        yield StreamChunk(
            delta=output.message,
            accumulated=output.message,
            done=True,
            structured=output.structured,
            tool_calls=output.tool_calls,
        )
