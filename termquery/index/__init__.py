# Semantic index package
from .semantic_index import QueryConcept, SemanticIndex, topological_order, transitive_closure

__all__ = [
    "QueryConcept",
    "SemanticIndex",
    "topological_order",
    "transitive_closure",
]
