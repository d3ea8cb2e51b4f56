"""Registro de domínios: grupos nomeados de funções expostas como tools.

Uma tool com id ``"<domínio>.<função>"`` resolve para a função registrada,
respeitando a lista `domains` da rota (None = todos os domínios).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from rotaflow.domain.errors import RotaflowError
from rotaflow.flow.tool import ToolContext, ToolDefinition
from rotaflow.observability.logging import get_logger
from rotaflow.utils.awaitables import call_maybe_async

logger: logging.Logger = get_logger(__name__)


class DomainRegistry:
    """Mapa nome -> objeto de domínio (dict de callables ou objeto com métodos)."""

    def __init__(self) -> None:
        self._domains: dict[str, Any] = {}

    def register(self, name: str, domain: Any) -> None:
        if "." in name:
            raise RotaflowError(f'Domain name cannot contain ".": {name}')
        if name in self._domains:
            raise RotaflowError(f'Domain "{name}" is already registered')
        self._domains[name] = domain
        logger.debug("domain_registered", extra={"domain": name})

    def get(self, name: str) -> Any | None:
        return self._domains.get(name)

    def has(self, name: str) -> bool:
        return name in self._domains

    def all(self) -> dict[str, Any]:  # noqa: A003
        return dict(self._domains)

    def filtered(self, allowed: Sequence[str] | None) -> dict[str, Any]:
        """Domínios visíveis para uma rota (`None` = todos)."""
        if allowed is None:
            return self.all()
        return {name: d for name, d in self._domains.items() if name in allowed}

    def _lookup(self, domain: Any, method: str) -> Callable[..., Any] | None:
        if isinstance(domain, Mapping):
            fn = domain.get(method)
        else:
            fn = getattr(domain, method, None)
        if method.startswith("_") or not callable(fn):
            return None
        return fn

    def resolve_tool(
        self, tool_id: str, allowed: Sequence[str] | None = None
    ) -> ToolDefinition | None:
        """Resolve ``dominio.funcao`` para ToolDefinition; None se indisponível."""
        if "." not in tool_id:
            return None
        name, method = tool_id.split(".", 1)
        domain = self.filtered(allowed).get(name)
        if domain is None:
            return None
        fn = self._lookup(domain, method)
        if fn is None:
            return None

        async def handler(ctx: ToolContext, args: dict[str, Any]) -> Any:
            return await call_maybe_async(fn, **args)

        return ToolDefinition(
            id=tool_id,
            handler=handler,
            description=(getattr(fn, "__doc__", None) or "").strip(),
            name=tool_id,
        )

    def describe(self, allowed: Sequence[str] | None = None) -> list[str]:
        """Lista ``dominio.funcao`` disponíveis (para prompts)."""
        out: list[str] = []
        for name, domain in self.filtered(allowed).items():
            keys = domain.keys() if isinstance(domain, Mapping) else dir(domain)
            for key in keys:
                if self._lookup(domain, key) is not None:
                    out.append(f"{name}.{key}")
        return out
