"""
Document storage for versioned terminology records.
Filter-expression algebra, backend interface, in-memory and Neo4j backends.
"""

from .backend import (
    COLLECTIONS,
    COMPONENT_KEYS,
    CONCEPTS,
    DESCRIPTIONS,
    MEMBERS,
    QUERY_CONCEPTS,
    RELATIONSHIPS,
    DocumentBackend,
    ScoredDocument,
    SortKey,
    identifier_order,
)
from .filters import (
    MATCH_ALL,
    MATCH_NONE,
    And,
    AnyMapValue,
    Exists,
    FilterExpr,
    Not,
    Or,
    Range,
    Term,
    Terms,
    all_of,
    any_of,
    negate,
    terms,
)
from .health import BackendHealthStatus, check_backend_connectivity, check_backend_health
from .memory_backend import InMemoryBackend
from .neo4j_backend import CypherFilterCompiler, Neo4jBackend, compile_filter

__all__ = [
    # Collections
    "CONCEPTS",
    "DESCRIPTIONS",
    "RELATIONSHIPS",
    "MEMBERS",
    "QUERY_CONCEPTS",
    "COLLECTIONS",
    "COMPONENT_KEYS",
    # Filters
    "FilterExpr",
    "MATCH_ALL",
    "MATCH_NONE",
    "Term",
    "Terms",
    "Range",
    "Exists",
    "AnyMapValue",
    "And",
    "Or",
    "Not",
    "all_of",
    "any_of",
    "negate",
    "terms",
    # Backends
    "DocumentBackend",
    "ScoredDocument",
    "SortKey",
    "identifier_order",
    "InMemoryBackend",
    "Neo4jBackend",
    "CypherFilterCompiler",
    "compile_filter",
    # Health checks
    "BackendHealthStatus",
    "check_backend_health",
    "check_backend_connectivity",
]
