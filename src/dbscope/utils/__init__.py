"""
Utility helpers shared across dbscope packages.
"""

from .logging import (
    configure_logging,
    correlation_scope,
    get_correlation_id,
    get_logger,
    redact_params,
    set_correlation_id,
    time_call,
)

__all__ = [
    "configure_logging",
    "correlation_scope",
    "get_correlation_id",
    "get_logger",
    "redact_params",
    "set_correlation_id",
    "time_call",
]
