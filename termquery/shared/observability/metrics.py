# Prometheus metrics for the termquery engine

from prometheus_client import Counter, Histogram, generate_latest

from .logging import get_logger

logger = get_logger(__name__)

# ===== Search metrics =====
search_requests_total = Counter(
    "termquery_search_requests_total",
    "Total concept searches by dispatch mode",
    ["mode", "status"],
)

search_duration_seconds = Histogram(
    "termquery_search_duration_seconds",
    "Concept search duration in seconds",
    ["mode"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

short_term_prefix_total = Counter(
    "termquery_short_term_prefix_total",
    "Searches short-circuited because the term prefix was too short",
)

# ===== Constraint evaluation metrics =====
ecl_evaluations_total = Counter(
    "termquery_ecl_evaluations_total",
    "Sub-expression constraint evaluations",
    ["operator", "outcome"],
)

ecl_evaluation_duration_seconds = Histogram(
    "termquery_ecl_evaluation_duration_seconds",
    "Sub-expression constraint evaluation duration in seconds",
    ["operator"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

# ===== Semantic index metrics =====
semantic_index_builds_total = Counter(
    "termquery_semantic_index_builds_total",
    "Semantic index entry builds",
    ["form", "status"],
)

semantic_index_entries_written = Counter(
    "termquery_semantic_index_entries_written_total",
    "Semantic index entries written",
    ["form"],
)

# ===== Branch metrics =====
branch_criteria_resolutions_total = Counter(
    "termquery_branch_criteria_resolutions_total",
    "Branch criteria resolutions",
    ["status"],
)

commits_total = Counter(
    "termquery_commits_total",
    "Commits by outcome",
    ["status"],
)

# ===== Backend metrics =====
backend_operations_total = Counter(
    "termquery_backend_operations_total",
    "Backend operations",
    ["collection", "operation", "status"],
)

backend_operation_duration_seconds = Histogram(
    "termquery_backend_operation_duration_seconds",
    "Backend operation duration in seconds",
    ["collection", "operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)


def get_metrics() -> bytes:
    """Prometheus exposition text for the default registry."""
    return generate_latest()
