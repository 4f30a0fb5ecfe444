"""
Logging setup for Arbiter.

All modules log through structlog. ``RequestLogger`` binds a request id and
the request's inputs as context variables; asyncio tasks copy the context
they are created in, so every line logged by the concurrent backend calls of
one fan-out carries the id of the request that started it.
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from typing import Any, Mapping

import structlog
from structlog.types import Processor

from arbiter.core.config import ArbiterSettings, get_settings


def build_processors(json_format: bool, colors: bool = False) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_format:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))
    return processors


def setup_logging(settings: ArbiterSettings | None = None) -> None:
    """
    Configure structlog, and the stdlib root logger used by httpx and
    uvicorn, from ``settings.log_level`` and ``settings.log_format``.
    """
    settings = settings or get_settings().arbiter
    level = logging.getLevelName(settings.log_level)
    json_format = settings.log_format == "json"

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    structlog.configure(
        processors=build_processors(json_format, colors=not json_format and sys.stderr.isatty()),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


class RequestLogger:
    """
    Scope for one API request.

    On entry binds ``request_id``, ``operation`` and the given context to
    structlog's context variables; on exit logs the outcome with the elapsed
    time and restores the previous bindings. ``None`` context values are
    dropped.
    """

    def __init__(
        self,
        logger: Any,
        operation: str,
        request_id: str | None = None,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.request_id = request_id or uuid.uuid4().hex[:12]
        self.context = {k: v for k, v in context.items() if v is not None}
        self._tokens: Mapping[str, Any] = {}
        self._start = 0.0

    def __enter__(self) -> "RequestLogger":
        self._tokens = structlog.contextvars.bind_contextvars(
            request_id=self.request_id,
            operation=self.operation,
            **self.context,
        )
        self._start = time.perf_counter()
        self.logger.info("Request started")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        elapsed_ms = round((time.perf_counter() - self._start) * 1000, 1)
        try:
            if exc_type is None:
                self.logger.info("Request completed", elapsed_ms=elapsed_ms)
            else:
                self.logger.warning(
                    "Request failed",
                    error=str(exc_val),
                    error_type=exc_type.__name__,
                    elapsed_ms=elapsed_ms,
                )
        finally:
            structlog.contextvars.reset_contextvars(**self._tokens)
