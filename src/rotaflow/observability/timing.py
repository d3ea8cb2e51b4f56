"""Medição de latência por fase (prepare, llm, coleta, finalize)."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Generator

from rotaflow.observability.logging import get_logger

logger = get_logger(__name__)


class Stopwatch:
    """Cronômetro simples; `elapsed_ms` fica disponível após o bloco."""

    __slots__ = ("_start", "elapsed_ms")

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self.elapsed_ms = 0.0

    def stop(self) -> float:
        self.elapsed_ms = round((time.perf_counter() - self._start) * 1000, 2)
        return self.elapsed_ms


@contextlib.contextmanager
def timed(component: str, *, log: bool = True) -> Generator[Stopwatch, None, None]:
    """Context manager que mede e loga o tempo de um componente.

    Uso:
        with timed("batch.llm_call") as sw:
            ...
        sw.elapsed_ms

    Loga entrada estruturada com:
        - component: nome do componente medido
        - elapsed_ms: milissegundos decorridos
    """
    watch = Stopwatch()
    try:
        yield watch
    finally:
        watch.stop()
        if log:
            logger.debug(
                "component_latency",
                extra={"component": component, "elapsed_ms": watch.elapsed_ms},
            )
