# Observability package
from .exemplars import trace_backend_operation, trace_ecl, trace_search
from .logging import (
    get_correlation_id,
    get_logger,
    request_context,
    set_correlation_id,
    setup_logging,
)
from .metrics import get_metrics
from .tracing import get_tracer, init_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "request_context",
    "init_tracing",
    "get_tracer",
    "get_metrics",
    "trace_search",
    "trace_ecl",
    "trace_backend_operation",
]
