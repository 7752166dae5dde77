# Observability package
from .logging import (
    bind_tenant,
    clear_request_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)
from .metrics import get_metrics, setup_metrics
from .tracing import get_tracer, setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "bind_tenant",
    "clear_request_context",
    "setup_tracing",
    "get_tracer",
    "setup_metrics",
    "get_metrics",
]
