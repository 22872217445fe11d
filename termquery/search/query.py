"""
Concept query value.

ConceptQuery is immutable: every ``with_*`` method and the logical clause
helpers return a new query, so a query shared between callers never changes
underneath them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Optional, Tuple

from termquery.ecl.ast import Expression
from termquery.storage.filters import MATCH_ALL, FilterExpr, Term, any_of


@dataclass(frozen=True)
class ConceptQuery:
    stated: bool = False
    term_prefix: Optional[str] = None
    language_codes: Optional[Tuple[str, ...]] = None
    ecl: Optional[Expression] = None
    concept_ids: Optional[Tuple[str, ...]] = None
    active_filter: Optional[bool] = None
    definition_status_filter: Optional[str] = None
    logical_clauses: Tuple[FilterExpr, ...] = ()

    def __post_init__(self) -> None:
        if self.term_prefix == "":
            object.__setattr__(self, "term_prefix", None)
        if self.definition_status_filter == "":
            object.__setattr__(self, "definition_status_filter", None)

    # ---------------------------------------------------------------- builders
    def with_stated(self, stated: bool) -> "ConceptQuery":
        return replace(self, stated=stated)

    def with_term_prefix(self, term_prefix: Optional[str]) -> "ConceptQuery":
        return replace(self, term_prefix=term_prefix or None)

    def with_language_codes(self, language_codes: Iterable[str]) -> "ConceptQuery":
        return replace(self, language_codes=tuple(language_codes))

    def with_ecl(self, ecl: Optional[Expression]) -> "ConceptQuery":
        return replace(self, ecl=ecl)

    def with_concept_ids(self, concept_ids: Optional[Iterable[str]]) -> "ConceptQuery":
        if concept_ids is None:
            return replace(self, concept_ids=None)
        # De-duplicated, caller order kept
        return replace(self, concept_ids=tuple(dict.fromkeys(concept_ids)))

    def with_active_filter(self, active: Optional[bool]) -> "ConceptQuery":
        return replace(self, active_filter=active)

    def with_definition_status_filter(self, definition_status_id: Optional[str]) -> "ConceptQuery":
        return replace(self, definition_status_filter=definition_status_id or None)

    def self_(self, concept_id: str) -> "ConceptQuery":
        return replace(self, logical_clauses=self.logical_clauses + (Term("concept_id", concept_id),))

    def descendant(self, concept_id: str) -> "ConceptQuery":
        return replace(self, logical_clauses=self.logical_clauses + (Term("ancestors", concept_id),))

    def self_or_descendant(self, concept_id: str) -> "ConceptQuery":
        return self.self_(concept_id).descendant(concept_id)

    # -------------------------------------------------------------- inspection
    @property
    def logical_filter(self) -> FilterExpr:
        """OR of the primitive logical clauses; MATCH_ALL when there are none."""
        if not self.logical_clauses:
            return MATCH_ALL
        return any_of(*self.logical_clauses)

    @property
    def has_lexical_criteria(self) -> bool:
        return self.term_prefix is not None

    @property
    def has_relationship_conditions(self) -> bool:
        return self.ecl is not None or bool(self.logical_clauses)

    @property
    def has_logical_conditions(self) -> bool:
        return (
            self.has_relationship_conditions
            or bool(self.concept_ids)
            or self.active_filter is not None
            or self.definition_status_filter is not None
        )
