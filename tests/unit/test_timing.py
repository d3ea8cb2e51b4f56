"""Testes do helper de latência timed()."""

from __future__ import annotations

import time
from unittest.mock import patch

from rotaflow.observability.timing import Stopwatch, timed


class TestTimedContextManager:
    """Testa context manager timed() para medição de latência."""

    def test_timed_measures_elapsed_time(self):
        """timed() deve medir o tempo decorrido."""
        with patch("rotaflow.observability.timing.logger") as mock_logger:
            with timed("batch.llm_call") as sw:
                time.sleep(0.01)

            mock_logger.debug.assert_called_once()
            extra = mock_logger.debug.call_args.kwargs["extra"]
            assert extra["component"] == "batch.llm_call"
            assert extra["elapsed_ms"] >= 10.0
            assert sw.elapsed_ms == extra["elapsed_ms"]

    def test_timed_logs_on_exception(self):
        """timed() deve logar mesmo se houver exceção."""
        with patch("rotaflow.observability.timing.logger") as mock_logger:
            try:
                with timed("error_component"):
                    raise ValueError("test error")
            except ValueError:
                pass

            mock_logger.debug.assert_called_once()

    def test_timed_without_log(self):
        """log=False mede sem logar."""
        with patch("rotaflow.observability.timing.logger") as mock_logger:
            with timed("silent", log=False) as sw:
                pass

            mock_logger.debug.assert_not_called()
            assert sw.elapsed_ms >= 0.0


class TestStopwatch:
    """Cronômetro usado nos tempos por fase do lote."""

    def test_stop_rounds_to_two_decimals(self):
        watch = Stopwatch()
        elapsed = watch.stop()
        assert elapsed == watch.elapsed_ms
        assert round(elapsed, 2) == elapsed
