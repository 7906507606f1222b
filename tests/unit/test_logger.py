"""Unit tests for the logging helpers (wrserver.utils.logger)."""

from __future__ import annotations

import pytest
import structlog
from structlog.testing import capture_logs

from wrserver.utils.logger import PerformanceLogger, clear_request_id, set_request_id


class TestPerformanceLogger:
    def test_slow_operation_logs_warning_with_duration(self) -> None:
        with capture_logs() as logs:
            with PerformanceLogger("uris:search", structlog.get_logger("perf"), warn_ms=0.0):
                pass

        assert logs[0]["event"] == "uris:search completed"
        assert logs[0]["log_level"] == "warning"
        assert logs[0]["duration_ms"] >= 0

    def test_failure_logs_error_and_reraises(self) -> None:
        with capture_logs() as logs:
            with pytest.raises(RuntimeError):
                with PerformanceLogger("uris:search", structlog.get_logger("perf")):
                    raise RuntimeError("upstream reset")

        assert logs[0]["event"] == "uris:search failed"
        assert logs[0]["log_level"] == "error"
        assert logs[0]["error"] == "upstream reset"


class TestRequestId:
    def test_bound_then_cleared(self) -> None:
        set_request_id("01HZX3J6Q8Y2B9K7M4N5P6R7S8")
        assert structlog.contextvars.get_contextvars()["request_id"] == "01HZX3J6Q8Y2B9K7M4N5P6R7S8"

        clear_request_id()
        assert "request_id" not in structlog.contextvars.get_contextvars()
