"""
Immutable filter expressions over stored documents.

Every query the engine issues is expressed as a FilterExpr tree built from
pure values. Combinators never mutate their operands, so a sub-query built in
one place can be reused in another without leaking clauses.

Backends either evaluate a tree directly (``matches``) or compile it into
their own query language (see ``neo4j_backend.CypherFilterCompiler``).

Field names are dotted paths: ``attributes.363698007`` addresses the entry
``"363698007"`` of the ``attributes`` map.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Tuple

_MISSING = object()


def get_field(doc: Mapping[str, Any], field: str) -> Any:
    """Resolve a dotted field path, returning a sentinel when absent."""
    current: Any = doc
    for part in field.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


class FilterExpr:
    """Base class for filter expressions."""

    def matches(self, doc: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def __and__(self, other: "FilterExpr") -> "FilterExpr":
        return all_of(self, other)

    def __or__(self, other: "FilterExpr") -> "FilterExpr":
        return any_of(self, other)

    def __invert__(self) -> "FilterExpr":
        return negate(self)


@dataclass(frozen=True)
class MatchAll(FilterExpr):
    def matches(self, doc: Mapping[str, Any]) -> bool:
        return True


@dataclass(frozen=True)
class MatchNone(FilterExpr):
    def matches(self, doc: Mapping[str, Any]) -> bool:
        return False


MATCH_ALL = MatchAll()
MATCH_NONE = MatchNone()


@dataclass(frozen=True)
class Term(FilterExpr):
    """Field equals value, or contains it when the field is multi-valued."""

    field: str
    value: Any

    def matches(self, doc: Mapping[str, Any]) -> bool:
        actual = get_field(doc, self.field)
        if actual is _MISSING or actual is None:
            return False
        if _is_collection(actual):
            return self.value in actual
        return actual == self.value


@dataclass(frozen=True)
class Terms(FilterExpr):
    """Field equals any of the values (or shares one, if multi-valued)."""

    field: str
    values: frozenset

    def __post_init__(self) -> None:
        if not isinstance(self.values, frozenset):
            object.__setattr__(self, "values", frozenset(self.values))

    def matches(self, doc: Mapping[str, Any]) -> bool:
        if not self.values:
            return False
        actual = get_field(doc, self.field)
        if actual is _MISSING or actual is None:
            return False
        if _is_collection(actual):
            return not self.values.isdisjoint(actual)
        return actual in self.values


@dataclass(frozen=True)
class Range(FilterExpr):
    field: str
    gt: Optional[Any] = None
    gte: Optional[Any] = None
    lt: Optional[Any] = None
    lte: Optional[Any] = None

    def matches(self, doc: Mapping[str, Any]) -> bool:
        actual = get_field(doc, self.field)
        if actual is _MISSING or actual is None:
            return False
        if self.gt is not None and not actual > self.gt:
            return False
        if self.gte is not None and not actual >= self.gte:
            return False
        if self.lt is not None and not actual < self.lt:
            return False
        if self.lte is not None and not actual <= self.lte:
            return False
        return True


@dataclass(frozen=True)
class Exists(FilterExpr):
    """Field is present and not null (and not empty, if multi-valued)."""

    field: str

    def matches(self, doc: Mapping[str, Any]) -> bool:
        actual = get_field(doc, self.field)
        if actual is _MISSING or actual is None:
            return False
        if _is_collection(actual):
            return len(actual) > 0
        return True


@dataclass(frozen=True)
class AnyMapValue(FilterExpr):
    """Some entry of the map field holds one of the values."""

    field: str
    values: frozenset

    def __post_init__(self) -> None:
        if not isinstance(self.values, frozenset):
            object.__setattr__(self, "values", frozenset(self.values))

    def matches(self, doc: Mapping[str, Any]) -> bool:
        mapping = get_field(doc, self.field)
        if not isinstance(mapping, Mapping) or not self.values:
            return False
        for entry in mapping.values():
            if _is_collection(entry):
                if not self.values.isdisjoint(entry):
                    return True
            elif entry in self.values:
                return True
        return False


@dataclass(frozen=True)
class And(FilterExpr):
    clauses: Tuple[FilterExpr, ...]

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return all(clause.matches(doc) for clause in self.clauses)


@dataclass(frozen=True)
class Or(FilterExpr):
    clauses: Tuple[FilterExpr, ...]

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return any(clause.matches(doc) for clause in self.clauses)


@dataclass(frozen=True)
class Not(FilterExpr):
    clause: FilterExpr

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return not self.clause.matches(doc)


def all_of(*clauses: FilterExpr) -> FilterExpr:
    flat = []
    for clause in clauses:
        if clause is None or clause == MATCH_ALL:
            continue
        if clause == MATCH_NONE:
            return MATCH_NONE
        if isinstance(clause, And):
            flat.extend(clause.clauses)
        else:
            flat.append(clause)
    if not flat:
        return MATCH_ALL
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def any_of(*clauses: FilterExpr) -> FilterExpr:
    flat = []
    for clause in clauses:
        if clause is None or clause == MATCH_NONE:
            continue
        if clause == MATCH_ALL:
            return MATCH_ALL
        if isinstance(clause, Or):
            flat.extend(clause.clauses)
        else:
            flat.append(clause)
    if not flat:
        return MATCH_NONE
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def negate(clause: FilterExpr) -> FilterExpr:
    if clause == MATCH_ALL:
        return MATCH_NONE
    if clause == MATCH_NONE:
        return MATCH_ALL
    if isinstance(clause, Not):
        return clause.clause
    return Not(clause)


def terms(field: str, values: Iterable[Any]) -> FilterExpr:
    """Terms filter that collapses to MATCH_NONE for an empty value set."""
    values = frozenset(values)
    if not values:
        return MATCH_NONE
    return Terms(field, values)
