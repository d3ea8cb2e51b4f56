"""Re-exports dos protocolos de domínio para uso pela camada de aplicação."""

from __future__ import annotations

from rotaflow.domain.protocols.provider import AiProvider
from rotaflow.domain.protocols.session_store import (
    AsyncMessageStoreProtocol,
    AsyncSessionStoreProtocol,
)

__all__ = [
    "AiProvider",
    "AsyncSessionStoreProtocol",
    "AsyncMessageStoreProtocol",
]
