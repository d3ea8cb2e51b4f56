"""Exceções do rotaflow.

Falhas de lote (prepare/llm/validação/finalize) NÃO são exceções:
são devolvidas como dados em BatchExecutionResult.
"""

from __future__ import annotations


class RotaflowError(Exception):
    """Erro base do pacote."""

    pass


class RouteBuildError(RotaflowError):
    """Construção inválida do grafo de rota (ex.: encadear após END_ROUTE)."""

    pass


class ToolResolutionError(RotaflowError):
    """Referência de tool não pôde ser resolvida."""

    pass


class ProviderError(RotaflowError):
    """Falha no adapter do provedor de modelo."""

    pass


class SessionStoreError(RotaflowError):
    """Erro ao persistir ou recuperar sessão."""

    pass


class RouteNotFoundError(RotaflowError):
    """Rota referenciada (id ou título) não está registrada no agente."""

    pass
