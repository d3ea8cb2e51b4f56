"""Contratos pydantic para entrada/saída do provedor e roteamento."""

from rotaflow.ai.contracts.provider import (
    GenerateMessageInput,
    GenerateMessageOutput,
    GenerationParameters,
    StreamChunk,
    ToolSpec,
)
from rotaflow.ai.contracts.routing import (
    RoutingDecisionOutput,
    StepSelectionOutput,
)

__all__ = [
    "GenerateMessageInput",
    "GenerateMessageOutput",
    "GenerationParameters",
    "StreamChunk",
    "ToolSpec",
    "RoutingDecisionOutput",
    "StepSelectionOutput",
]
