"""Structured logging utilities for wrserver.

All logging goes through structlog and is written to stderr. The request id
bound by ``wrserver.middleware.RequestContextMiddleware`` lives in structlog's
context variables, so every line logged while serving a request carries it.
"""

import logging
import sys
import time
from typing import Any, Optional

import structlog
from structlog.types import Processor


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog for the process.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Unknown names mean INFO.
        json_output: JSON lines when True, coloured console output otherwise.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "wrserver") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_request_id() -> None:
    structlog.contextvars.unbind_contextvars("request_id")


class PerformanceLogger:
    """Time a block of work.

    Completion is logged at DEBUG, or at WARNING past ``warn_ms``. A failure is
    logged at ERROR and the exception propagates.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        warn_ms: float = 1000.0,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.warn_ms = warn_ms
        self._started = 0.0

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration_ms = round((time.perf_counter() - self._started) * 1000, 2)
        if exc_type is not None:
            self.logger.error(
                f"{self.operation} failed", duration_ms=duration_ms, error=str(exc_val)
            )
            return
        log = self.logger.warning if duration_ms > self.warn_ms else self.logger.debug
        log(f"{self.operation} completed", duration_ms=duration_ms)


# Defaults until run.main() reconfigures from the environment
configure_logging()
