"""Structured logging for the curation core.

Log lines always go to stderr so that stdout stays free for command output
(feed pages printed as JSON must parse). Calls made while a site is being
processed carry ``site_id`` / ``tenant_id`` through structlog context
variables, see :func:`site_context`.
"""

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TextIO

import structlog
from structlog import contextvars, processors, stdlib

from .config import get_settings

# Handlers installed by setup_logging; replaced, never stacked, on reconfiguration
_handlers: list[logging.Handler] = []


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stderr`` is at emit time."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self) -> TextIO:
        return sys.stderr

    @stream.setter
    def stream(self, value: TextIO) -> None:
        pass


def _build_processors(json_logging: bool) -> list[Any]:
    chain: list[Any] = [
        contextvars.merge_contextvars,
        stdlib.filter_by_level,
        stdlib.add_logger_name,
        stdlib.add_log_level,
        processors.TimeStamper(fmt="iso", utc=True),
        processors.StackInfoRenderer(),
        processors.format_exc_info,
    ]
    if json_logging:
        chain.append(processors.JSONRenderer(serializer=json.dumps, default=str))
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=False))
    return chain


def setup_logging(
    log_level: str | None = None,
    json_logging: bool | None = None,
    log_file: Path | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging.

    Safe to call repeatedly: the CLI reconfigures after import-time setup,
    and the new level and renderer take effect immediately.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR); defaults to settings
        json_logging: JSON lines instead of console output; defaults to settings
        log_file: Optional file receiving the same lines
        stream: Text stream for log lines, stderr when omitted
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")
    json_logging = settings.json_logging if json_logging is None else json_logging

    root = logging.getLogger()
    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()

    console = logging.StreamHandler(stream) if stream is not None else _StderrHandler()
    console.setFormatter(logging.Formatter("%(message)s"))
    _handlers.append(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        _handlers.append(file_handler)

    for handler in _handlers:
        root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=_build_processors(json_logging),
        wrapper_class=stdlib.BoundLogger,
        logger_factory=stdlib.LoggerFactory(),
        # Loggers are module globals; caching would pin the first configuration
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


@contextmanager
def site_context(site_id: int, tenant_id: int | None = None, **extra: Any) -> Iterator[None]:
    """Attach a site (and its tenant) to every log line emitted inside the block."""
    bound: dict[str, Any] = {"site_id": site_id, **extra}
    if tenant_id is not None:
        bound["tenant_id"] = tenant_id
    with contextvars.bound_contextvars(**bound):
        yield


def log_processing_stage(
    stage: str,
    input_count: int,
    output_count: int,
    duration: float | None = None,
    **kwargs: Any
) -> dict[str, Any]:
    """Build the event fields for one pipeline stage.

    ``dropped`` is how many inputs did not make it through the stage
    (skipped entries for ingestion, filtered items for ranking).
    """
    log_data = {
        "stage": stage,
        "input_count": input_count,
        "output_count": output_count,
        "dropped": max(0, input_count - output_count),
        **kwargs
    }
    if duration is not None:
        log_data["duration_ms"] = round(duration * 1000, 3)
    return log_data


def log_error(
    error: Exception,
    context: str | None = None,
    **kwargs: Any
) -> dict[str, Any]:
    """Build the event fields for a failure, including its direct cause."""
    log_data = {
        "error_type": error.__class__.__name__,
        "error_message": str(error),
        **kwargs
    }
    if context:
        log_data["context"] = context
    cause = error.__cause__
    if cause is not None:
        log_data["cause_type"] = cause.__class__.__name__
        log_data["cause_message"] = str(cause)
    return log_data


class PerformanceLogger:
    """Context manager timing an operation; failures are logged and re-raised."""

    def __init__(self, operation: str, logger: structlog.stdlib.BoundLogger, **context: Any):
        self.operation = operation
        self.logger = logger
        self.context = context
        self.start_time: float | None = None
        self.duration: float | None = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.info("operation_started", operation=self.operation, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        self.duration = time.perf_counter() - self.start_time
        duration_ms = round(self.duration * 1000, 3)
        if exc_type is None:
            self.logger.info(
                "operation_completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **self.context
            )
        else:
            self.logger.error(
                "operation_failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                error_message=str(exc_val) if exc_val else None,
                **self.context
            )


# Initialize logging on module import
setup_logging()
