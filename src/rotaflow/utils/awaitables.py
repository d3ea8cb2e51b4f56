"""Helpers para callbacks que podem ser síncronos ou assíncronos."""

from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Aguarda `value` se for awaitable; caso contrário retorna como está."""
    if inspect.isawaitable(value):
        return await value
    return value


async def call_maybe_async(fn: Any, *args: Any, **kwargs: Any) -> Any:
    """Chama `fn` e aguarda o resultado quando necessário."""
    return await maybe_await(fn(*args, **kwargs))
