"""Configurações do motor via variáveis de ambiente.

Todas as configurações são carregadas de env vars com prefixo ROTAFLOW_.
Nunca hardcode secrets (ex.: chave da OpenAI).
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from rotaflow.observability.logging import get_logger

# Defaults dos knobs (também usados quando o Agent é criado sem Settings)
DEFAULT_SWITCH_THRESHOLD: int = 70
DEFAULT_MAX_TOOL_LOOPS: int = 5


class Settings(BaseSettings):
    """Configurações lidas do ambiente (prefixo ROTAFLOW_)."""

    model_config = SettingsConfigDict(
        env_prefix="ROTAFLOW_",
        case_sensitive=False,
        extra="ignore",
    )

    # Aplicação
    service_name: str = "rotaflow"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"  # json | text

    # Roteamento
    routing_switch_threshold: int = DEFAULT_SWITCH_THRESHOLD  # Score mínimo para trocar de rota
    routing_max_candidates: int | None = None  # None = todas as rotas pontuadas
    routing_allow_route_switch: bool = True  # False fixa a rota ativa

    # Tools
    tool_max_loops: int = DEFAULT_MAX_TOOL_LOOPS  # Limite do loop de follow-up

    # Hooks de dados/contexto
    hook_order: str = "agent_first"  # agent_first | route_first

    # Persistência
    auto_save_enabled: bool = True
    session_store_backend: str = "memory"  # memory | redis
    redis_url: str | None = None
    session_ttl_seconds: int = 7200

    # OpenAI
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 30.0
    openai_temperature: float = 0.3

    def validate_routing_config(self) -> list[str]:
        """Valida knobs de roteamento e do loop de tools.

        Retorna lista de erros (vazia = OK).
        """
        errors: list[str] = []
        if not 0 <= self.routing_switch_threshold <= 100:
            errors.append("ROUTING_SWITCH_THRESHOLD deve estar entre 0 e 100")
        if self.routing_max_candidates is not None and self.routing_max_candidates < 1:
            errors.append("ROUTING_MAX_CANDIDATES deve ser >= 1 (ou vazio para todas)")
        if self.tool_max_loops < 1:
            errors.append("TOOL_MAX_LOOPS deve ser >= 1")
        if self.hook_order not in {"agent_first", "route_first"}:
            errors.append("HOOK_ORDER inválido: use agent_first | route_first")
        return errors

    def validate_session_store_config(self) -> list[str]:
        """Valida backend de session store por ambiente.

        Em staging/prod, memory é proibido (processos sem estado).
        Retorna lista de erros (vazia = tudo OK).
        """
        errors: list[str] = []
        backend = self.session_store_backend.lower()

        valid_backends = {"memory", "redis"}
        if backend not in valid_backends:
            errors.append(
                f"SESSION_STORE_BACKEND '{backend}' inválido. Valores válidos: {valid_backends}"
            )

        if (self.is_production or self.is_staging) and backend == "memory":
            errors.append(
                "SESSION_STORE_BACKEND=memory é proibido em staging/production. "
                "Configure 'redis'."
            )

        if backend == "redis" and not self.redis_url:
            errors.append("SESSION_STORE_BACKEND=redis requer REDIS_URL configurado")

        return errors

    def validate_openai_config(self) -> list[str]:
        """Valida configuração de OpenAI (chave obrigatória fora de dev)."""
        errors: list[str] = []
        if not self.is_development and not self.openai_api_key:
            errors.append("OPENAI_API_KEY obrigatório em staging/production")
        if self.openai_timeout_seconds <= 0:
            errors.append("OPENAI_TIMEOUT_SECONDS deve ser > 0")
        return errors

    def validate_all(self) -> list[str]:
        """Agrega todas as validações."""
        return (
            self.validate_routing_config()
            + self.validate_session_store_config()
            + self.validate_openai_config()
        )

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local", "test")

    def model_post_init(self, __context: Any) -> None:
        """Loga erros de configuração no startup (fail-closed em produção)."""
        logger: logging.Logger = get_logger(__name__)
        errors = self.validate_all()
        if not errors:
            return
        if self.is_production:
            logger.error(
                "settings_validation_failed",
                extra={"errors": errors, "environment": self.environment},
            )
            raise RuntimeError(f"Configuração inválida: {'; '.join(errors)}")
        logger.warning(
            "settings_validation_warnings",
            extra={"errors": errors, "environment": self.environment},
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna uma instância cacheada de Settings.

    A cache garante que mesmo múltiplas injeções não criam novos objetos.
    """
    return Settings()
