"""Testes unitários para config/settings.py.

Valida defaults, leitura de env vars e métodos de validação.
"""

from __future__ import annotations

import pytest

from rotaflow.config.settings import (
    DEFAULT_MAX_TOOL_LOOPS,
    DEFAULT_SWITCH_THRESHOLD,
    Settings,
    get_settings,
)


class TestSettingsDefaults:
    """Testes para valores padrão de Settings."""

    def test_default_environment_is_development(self) -> None:
        """Ambiente padrão deve ser development."""
        s = Settings()
        assert s.environment == "development"
        assert s.is_development is True
        assert s.is_production is False

    def test_default_routing_knobs(self) -> None:
        """Threshold de troca 70 e loop de tools limitado a 5."""
        s = Settings()
        assert s.routing_switch_threshold == DEFAULT_SWITCH_THRESHOLD == 70
        assert s.tool_max_loops == DEFAULT_MAX_TOOL_LOOPS == 5
        assert s.routing_max_candidates is None
        assert s.hook_order == "agent_first"

    def test_default_session_store_is_memory(self) -> None:
        """Backend de sessão padrão é memory (para dev)."""
        assert Settings().session_store_backend == "memory"


class TestSettingsFromEnv:
    """Leitura de variáveis com prefixo ROTAFLOW_."""

    def test_reads_prefixed_env_vars(self, monkeypatch) -> None:
        """Env vars ROTAFLOW_* devem sobrescrever defaults."""
        monkeypatch.setenv("ROTAFLOW_ROUTING_SWITCH_THRESHOLD", "55")
        monkeypatch.setenv("ROTAFLOW_HOOK_ORDER", "route_first")
        s = Settings()
        assert s.routing_switch_threshold == 55
        assert s.hook_order == "route_first"

    def test_get_settings_is_cached(self) -> None:
        """get_settings deve retornar a mesma instância."""
        assert get_settings() is get_settings()


class TestSettingsValidation:
    """Métodos validate_*."""

    def test_invalid_threshold_and_loops(self) -> None:
        """Threshold fora de 0-100 e tool_max_loops < 1 geram erros."""
        s = Settings(routing_switch_threshold=150, tool_max_loops=0)
        errors = s.validate_routing_config()
        assert len(errors) == 2

    def test_invalid_hook_order(self) -> None:
        """hook_order desconhecido é reportado."""
        errors = Settings(hook_order="random").validate_routing_config()
        assert any("HOOK_ORDER" in e for e in errors)

    def test_redis_backend_requires_url(self) -> None:
        """Backend redis sem REDIS_URL é inválido."""
        errors = Settings(session_store_backend="redis").validate_session_store_config()
        assert any("REDIS_URL" in e for e in errors)

    def test_staging_forbids_memory_backend(self) -> None:
        """Memory é proibido em staging."""
        s = Settings(environment="staging", openai_api_key="sk-test")
        assert any("proibido" in e for e in s.validate_session_store_config())

    def test_production_with_invalid_config_fails_closed(self) -> None:
        """Produção com configuração inválida deve levantar RuntimeError."""
        with pytest.raises(RuntimeError):
            Settings(environment="production")

    def test_production_with_valid_config(self) -> None:
        """Produção com redis + chave OpenAI é aceita."""
        s = Settings(
            environment="production",
            session_store_backend="redis",
            redis_url="redis://localhost:6379/0",
            openai_api_key="sk-test",
        )
        assert s.validate_all() == []
