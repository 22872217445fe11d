# OpenTelemetry spans linked to Prometheus metrics via exemplars

import time
from contextlib import contextmanager
from typing import Dict

from opentelemetry import trace
from opentelemetry.trace import SpanKind

from .logging import get_logger
from .metrics import (
    backend_operation_duration_seconds,
    backend_operations_total,
    ecl_evaluation_duration_seconds,
    ecl_evaluations_total,
    search_duration_seconds,
    search_requests_total,
)

logger = get_logger(__name__)


def get_trace_context() -> Dict[str, str]:
    """
    Get current trace context for exemplar linking.

    Returns:
        Dictionary with trace_id and span_id
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        return {
            "trace_id": format(ctx.trace_id, "032x"),
            "span_id": format(ctx.span_id, "016x"),
        }
    return {}


@contextmanager
def trace_search(mode: str, branch_path: str, stated: bool):
    """
    Trace one concept search dispatch with metrics and exemplars.

    Args:
        mode: Dispatch mode (all, lexical, logical, combined, short_term)
        branch_path: Branch the search runs against
        stated: Logical form used by constraint evaluation
    """
    tracer = trace.get_tracer(__name__)

    with tracer.start_as_current_span(
        f"termquery.search.{mode}",
        kind=SpanKind.INTERNAL,
        attributes={
            "termquery.branch": branch_path,
            "termquery.stated": stated,
            "termquery.search.mode": mode,
        },
    ) as span:
        trace_ctx = get_trace_context()
        with search_duration_seconds.labels(mode=mode).time():
            try:
                yield span
                search_requests_total.labels(mode=mode, status="success").inc(
                    exemplar=trace_ctx or None
                )
                span.set_attribute("termquery.search.status", "success")
            except Exception as e:
                search_requests_total.labels(mode=mode, status="error").inc(
                    exemplar=trace_ctx or None
                )
                span.set_attribute("termquery.search.status", "error")
                span.record_exception(e)
                raise


@contextmanager
def trace_ecl(operator: str):
    """
    Trace a sub-expression constraint evaluation.

    The outcome label is written by the caller through the yielded dict so
    that unconstrained, empty and id-set outcomes are counted separately.
    """
    tracer = trace.get_tracer(__name__)
    outcome = {"value": "error"}

    with tracer.start_as_current_span(
        f"termquery.ecl.{operator}",
        kind=SpanKind.INTERNAL,
        attributes={"termquery.ecl.operator": operator},
    ) as span:
        with ecl_evaluation_duration_seconds.labels(operator=operator).time():
            try:
                yield outcome
            except Exception as e:
                outcome["value"] = "error"
                span.record_exception(e)
                raise
            finally:
                ecl_evaluations_total.labels(
                    operator=operator, outcome=outcome["value"]
                ).inc()
                span.set_attribute("termquery.ecl.outcome", outcome["value"])


@contextmanager
def trace_backend_operation(collection: str, operation: str, system: str):
    """
    Trace a storage backend operation.

    Args:
        collection: Document collection name
        operation: insert, set_end, delete, stream, find, count, search_text
        system: Backend system identifier (memory, neo4j)
    """
    tracer = trace.get_tracer(__name__)

    with tracer.start_as_current_span(
        f"termquery.backend.{operation}",
        kind=SpanKind.CLIENT,
        attributes={
            "db.system": system,
            "db.operation": operation,
            "termquery.collection": collection,
        },
    ) as span:
        start = time.perf_counter()
        try:
            yield span
            backend_operations_total.labels(
                collection=collection, operation=operation, status="success"
            ).inc()
        except Exception as e:
            backend_operations_total.labels(
                collection=collection, operation=operation, status="error"
            ).inc()
            span.record_exception(e)
            raise
        finally:
            backend_operation_duration_seconds.labels(
                collection=collection, operation=operation
            ).observe(time.perf_counter() - start)
