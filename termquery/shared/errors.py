"""
Fault taxonomy for the query engine.

Every fault raised by termquery derives from TermQueryError so transport layers
can map the whole family in one place. Empty results are never faults.
"""

from typing import Any, Optional


class TermQueryError(Exception):
    """Base class for all engine faults."""


class BranchNotFound(TermQueryError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Branch '{path}' does not exist.")
        self.path = path


class BranchAlreadyExists(TermQueryError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Branch '{path}' already exists.")
        self.path = path


class ConceptNotFoundInIndex(TermQueryError):
    """Raised by single-concept semantic index lookups only."""

    def __init__(self, concept_id: str, path: str, stated: bool) -> None:
        form = "stated" if stated else "inferred"
        super().__init__(
            f"Concept {concept_id} not found in the {form} semantic index on branch {path}."
        )
        self.concept_id = concept_id
        self.path = path
        self.stated = stated


class IndexInvariantViolation(TermQueryError):
    """More than one semantic index entry matched a single key."""

    def __init__(self, concept_id: str, path: str, matches: int) -> None:
        super().__init__(
            f"More than one query-index-concept found for id {concept_id} "
            f"on branch {path} ({matches} entries)."
        )
        self.concept_id = concept_id
        self.path = path
        self.matches = matches


class CycleDetected(TermQueryError):
    def __init__(self, concept_ids: Any, stated: Optional[bool] = None) -> None:
        sample = sorted(concept_ids)[:10]
        super().__init__(f"Is-a cycle detected involving concepts {sample}")
        self.concept_ids = frozenset(concept_ids)
        self.stated = stated


class UnsupportedConstraint(TermQueryError):
    """Constraint shape that the evaluator refuses to compile."""


class BackendUnavailable(TermQueryError):
    """Storage backend could not be reached. Never retried internally."""


class ComponentExists(TermQueryError):
    def __init__(self, kind: str, component_id: str, path: str) -> None:
        super().__init__(f"{kind} '{component_id}' already exists on branch '{path}'.")
        self.component_id = component_id
        self.path = path


class ComponentNotFound(TermQueryError):
    def __init__(self, kind: str, component_id: str, path: str) -> None:
        super().__init__(f"{kind} '{component_id}' does not exist on branch '{path}'.")
        self.component_id = component_id
        self.path = path


class InvalidPage(TermQueryError, ValueError):
    """Page request outside the accepted range."""
