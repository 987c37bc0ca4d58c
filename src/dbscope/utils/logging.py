"""Structured logging helpers for dbscope."""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import IO, Any, Iterable, Iterator, Optional

LOGGER_NAMESPACE = "dbscope"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"

_correlation_id: ContextVar[str | None] = ContextVar("dbscope_correlation_id", default=None)

_SENSITIVE_TOKENS = ("password", "passwd", "secret", "token", "api_key", "apikey")


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with the correlation id of the current flow."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(level: int = logging.INFO, stream: Optional[IO[str]] = None) -> logging.Logger:
    """
    Attach one stream handler to the ``dbscope`` logger unless one is already present.
    """
    logger = logging.getLogger(LOGGER_NAMESPACE)
    if logger.handlers:
        return logger
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def set_correlation_id(value: Optional[str] = None) -> str:
    cid = value or uuid.uuid4().hex
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str:
    cid = _correlation_id.get()
    if cid is None:
        cid = set_correlation_id()
    return cid


@contextmanager
def correlation_scope(value: Optional[str] = None) -> Iterator[str]:
    """
    Use ``value`` (or a fresh id) as correlation id for the enclosed block only.
    """
    token = _correlation_id.set(value or uuid.uuid4().hex)
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


@contextmanager
def time_call(
    name: str,
    logger: logging.Logger,
    *,
    sql: str | None = None,
    params: Iterable[Any] | None = None,
    threshold_ms: int = 100,
) -> Iterator[None]:
    """
    Time the enclosed block. Slow blocks (``threshold_ms`` or more) log at WARNING.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        level = logging.WARNING if elapsed_ms >= threshold_ms else logging.DEBUG
        logger.log(
            level,
            "%s took %.2fms",
            name,
            elapsed_ms,
            extra={"sql": sql, "params": params, "elapsed_ms": elapsed_ms},
        )


def redact_params(params: Iterable[Any]) -> list[Any]:
    """
    Mask string parameters that look like credentials before they reach a log record.
    """
    return [
        "***" if isinstance(value, str) and any(t in value.lower() for t in _SENSITIVE_TOKENS) else value
        for value in params
    ]
