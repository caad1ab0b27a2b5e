"""
Observability - OpenTelemetry metrics + structured logging

Usage:
    from ribbon.observability import setup_observability, get_logger

    setup_observability(service_name="ribbon")
    logger = get_logger(__name__)
"""
from .setup import setup_observability, shutdown_observability
from .metrics import get_meter, create_quota_metrics, QuotaMetrics
from .logging_config import (
    configure_logging,
    get_logger,
    bind_context,
    clear_context,
    LogContext,
)

__all__ = [
    "setup_observability",
    "shutdown_observability",
    "get_meter",
    "create_quota_metrics",
    "QuotaMetrics",
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LogContext",
]
