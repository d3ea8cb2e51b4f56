"""Sinal de cancelamento propagado até a chamada ao modelo e ao streaming."""

from __future__ import annotations

import asyncio


class TurnCancelledError(Exception):
    """Turno abortado via CancelToken."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CancelToken:
    """Sinal único de abort por turno (equivalente a um AbortSignal)."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(self._reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()
