"""Camada de aplicação: Agent, sessões e persistência.

Uso típico:
    from rotaflow.application import Agent
"""

from rotaflow.application.agent import Agent
from rotaflow.application.persistence import PersistenceManager
from rotaflow.application.responses import AgentResponse, AgentStreamChunk
from rotaflow.application.session_manager import SessionManager

__all__ = [
    "Agent",
    "AgentResponse",
    "AgentStreamChunk",
    "PersistenceManager",
    "SessionManager",
]
