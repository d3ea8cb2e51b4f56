"""Configurações centralizadas do rotaflow.

Uso típico:
    from rotaflow.config import get_settings
"""

from rotaflow.config.settings import (
    DEFAULT_MAX_TOOL_LOOPS,
    DEFAULT_SWITCH_THRESHOLD,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "DEFAULT_SWITCH_THRESHOLD",
    "DEFAULT_MAX_TOOL_LOOPS",
]
