"""Structured logging helpers for emberorm."""

from __future__ import annotations

import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

ROOT_LOGGER = "emberorm"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(level: int | None = None) -> None:
    """
    Attach a single stream handler to the ``emberorm`` logger.

    The level defaults to ``EMBERORM_LOG_LEVEL`` (a level name) or INFO.
    Calling this more than once is harmless.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return
    if level is None:
        level_name = os.getenv("EMBERORM_LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def set_correlation_id(value: Optional[str] = None) -> str:
    token = value or str(uuid.uuid4())
    _correlation_id.set(token)
    return token


def get_correlation_id() -> str:
    cid = _correlation_id.get()
    if cid is None:
        cid = set_correlation_id()
    return cid


class CallTimer:
    """
    Context manager logging how long the wrapped block took.

    Blocks slower than ``threshold_ms`` are logged at WARNING, the rest at
    DEBUG. Extra keyword context is attached to the log record.
    """

    def __init__(self, name: str, logger: logging.Logger, *, threshold_ms: float, context: dict[str, Any]) -> None:
        self.name = name
        self.logger = logger
        self.threshold_ms = threshold_ms
        self.context = context
        self.elapsed_ms = 0.0
        self._start = 0.0

    def __enter__(self) -> "CallTimer":
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (time.monotonic() - self._start) * 1000
        level = logging.WARNING if self.elapsed_ms >= self.threshold_ms else logging.DEBUG
        extra = dict(self.context, elapsed_ms=self.elapsed_ms, failed=exc_type is not None)
        self.logger.log(level, "%s took %.2fms", self.name, self.elapsed_ms, extra=extra)


def time_call(name: str, logger: logging.Logger, *, threshold_ms: float = 100, **context: Any) -> CallTimer:
    return CallTimer(name, logger, threshold_ms=threshold_ms, context=context)
