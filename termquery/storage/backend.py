"""
Document backend interface.

The engine stores every versioned record (concepts, descriptions,
relationships, reference-set members, semantic index entries) as a flat
document in a named collection and reads it back exclusively through
FilterExpr trees. Documents carry the version fields written by a commit:

    internal_id  unique per stored version
    path         branch the version was committed on
    start        commit timestamp (epoch millis)
    end          timestamp the version stopped being current, absent if current
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .filters import FilterExpr

CONCEPTS = "concepts"
DESCRIPTIONS = "descriptions"
RELATIONSHIPS = "relationships"
MEMBERS = "members"
QUERY_CONCEPTS = "query_concepts"

COLLECTIONS = (CONCEPTS, DESCRIPTIONS, RELATIONSHIPS, MEMBERS, QUERY_CONCEPTS)

VERSION_FIELDS = ("internal_id", "path", "start", "end")

# Fields identifying one logical component across its stored versions
COMPONENT_KEYS = {
    CONCEPTS: ("concept_id",),
    DESCRIPTIONS: ("description_id",),
    RELATIONSHIPS: ("relationship_id",),
    MEMBERS: ("member_id",),
    QUERY_CONCEPTS: ("concept_id", "stated"),
}

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class SortKey:
    """Sort on an identifier field; identifiers order by length, then value."""

    field: str
    descending: bool = False


@dataclass
class ScoredDocument:
    doc: Dict[str, Any]
    score: float


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall((text or "").casefold())


def identifier_order(value: Any) -> Tuple[int, Any]:
    """Numeric-looking identifiers sort numerically without int conversion."""
    if isinstance(value, str):
        return (len(value), value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value)
    return (-1, 0)


class DocumentBackend:
    """Abstract interface for document storage and retrieval."""

    system = "abstract"

    def insert(self, collection: str, documents: Sequence[Dict[str, Any]]) -> None:
        raise NotImplementedError

    def set_end(
        self, collection: str, internal_ids: Sequence[str], end: Optional[int]
    ) -> int:
        """Set (or clear, with None) the end timestamp of stored versions."""
        raise NotImplementedError

    def delete(self, collection: str, flt: FilterExpr) -> int:
        raise NotImplementedError

    def stream(
        self,
        collection: str,
        flt: FilterExpr,
        *,
        sort: Sequence[SortKey] = (),
        batch_size: int = 1000,
    ) -> Iterator[Dict[str, Any]]:
        """Iterate all matching documents, fetching in bounded batches."""
        raise NotImplementedError

    def find(
        self,
        collection: str,
        flt: FilterExpr,
        *,
        sort: Sequence[SortKey] = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return one window of matching documents plus the total match count."""
        raise NotImplementedError

    def count(self, collection: str, flt: FilterExpr) -> int:
        raise NotImplementedError

    def search_text(
        self,
        collection: str,
        field: str,
        text: str,
        flt: FilterExpr,
        *,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[ScoredDocument], int]:
        """
        Relevance-ranked prefix search on a text field.

        Every word of ``text`` must prefix some word of the field. Results are
        ordered by score descending, then shorter field values first, then
        internal id, so equal scores page deterministically.
        """
        raise NotImplementedError
