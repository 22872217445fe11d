"""
In-process DocumentBackend.

Used for tests, local development and embedding the engine without a
database. Thread-safe: writers hold a lock, readers work on a snapshot taken
under the same lock, so a stream never observes a half-applied write call.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from termquery.shared.observability import get_logger, trace_backend_operation

from .backend import (
    COMPONENT_KEYS,
    DocumentBackend,
    ScoredDocument,
    SortKey,
    identifier_order,
    tokenize,
)
from .filters import FilterExpr, get_field

logger = get_logger(__name__)


def _freeze(value: Any) -> Any:
    if isinstance(value, (set, frozenset, list, tuple)):
        return frozenset(value) if isinstance(value, (set, frozenset)) else list(value)
    if isinstance(value, dict):
        return {k: _freeze(v) for k, v in value.items()}
    return value


def _prefix_score(query_tokens: Sequence[str], value: str) -> Optional[float]:
    value_tokens = tokenize(value)
    if not value_tokens:
        return None
    matched = 0
    for q in query_tokens:
        if not any(t.startswith(q) for t in value_tokens):
            return None
        matched += len(q)
    return matched / sum(len(t) for t in value_tokens)


class InMemoryBackend(DocumentBackend):
    system = "memory"

    def __init__(self) -> None:
        self._collections: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ helpers
    def _snapshot(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._collections[collection])

    @staticmethod
    def _sorted(
        docs: List[Dict[str, Any]], sort: Sequence[SortKey]
    ) -> List[Dict[str, Any]]:
        # Stable sorts applied from the least significant key
        for key in reversed(sort):
            docs = sorted(
                docs,
                key=lambda d, f=key.field: identifier_order(get_field(d, f)),
                reverse=key.descending,
            )
        return docs

    # ------------------------------------------------------------------ writes
    def insert(self, collection: str, documents: Sequence[Dict[str, Any]]) -> None:
        with trace_backend_operation(collection, "insert", self.system):
            frozen = [{k: _freeze(v) for k, v in doc.items()} for doc in documents]
            with self._lock:
                self._collections[collection].extend(frozen)
        logger.debug("Inserted documents", collection=collection, count=len(frozen))

    def set_end(
        self, collection: str, internal_ids: Sequence[str], end: Optional[int]
    ) -> int:
        targets = set(internal_ids)
        if not targets:
            return 0
        updated = 0
        with trace_backend_operation(collection, "set_end", self.system):
            with self._lock:
                docs = self._collections[collection]
                for i, doc in enumerate(docs):
                    if doc.get("internal_id") in targets:
                        replacement = dict(doc)
                        if end is None:
                            replacement.pop("end", None)
                        else:
                            replacement["end"] = end
                        docs[i] = replacement
                        updated += 1
        return updated

    def delete(self, collection: str, flt: FilterExpr) -> int:
        with trace_backend_operation(collection, "delete", self.system):
            with self._lock:
                docs = self._collections[collection]
                kept = [doc for doc in docs if not flt.matches(doc)]
                removed = len(docs) - len(kept)
                self._collections[collection] = kept
        return removed

    # ------------------------------------------------------------------- reads
    def stream(
        self,
        collection: str,
        flt: FilterExpr,
        *,
        sort: Sequence[SortKey] = (),
        batch_size: int = 1000,
    ) -> Iterator[Dict[str, Any]]:
        with trace_backend_operation(collection, "stream", self.system):
            matched = [doc for doc in self._snapshot(collection) if flt.matches(doc)]
            matched = self._sorted(matched, sort)
        for start in range(0, len(matched), batch_size):
            for doc in matched[start : start + batch_size]:
                yield dict(doc)

    def find(
        self,
        collection: str,
        flt: FilterExpr,
        *,
        sort: Sequence[SortKey] = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        with trace_backend_operation(collection, "find", self.system):
            matched = [doc for doc in self._snapshot(collection) if flt.matches(doc)]
            matched = self._sorted(matched, sort)
            end = None if limit is None else offset + limit
            return [dict(doc) for doc in matched[offset:end]], len(matched)

    def count(self, collection: str, flt: FilterExpr) -> int:
        with trace_backend_operation(collection, "count", self.system):
            return sum(1 for doc in self._snapshot(collection) if flt.matches(doc))

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
        query_tokens = tokenize(text)
        if not query_tokens:
            return [], 0
        with trace_backend_operation(collection, "search_text", self.system):
            scored = []
            for doc in self._snapshot(collection):
                value = get_field(doc, field)
                if not isinstance(value, str) or not flt.matches(doc):
                    continue
                score = _prefix_score(query_tokens, value)
                if score is not None:
                    scored.append(ScoredDocument(doc=dict(doc), score=score))
            # Equal score and length: component key order
            key_fields = COMPONENT_KEYS.get(collection, ("internal_id",))
            scored.sort(
                key=lambda s: (
                    -s.score,
                    len(get_field(s.doc, field)),
                    tuple(str(s.doc.get(f, "")) for f in key_fields),
                )
            )
            end = None if limit is None else offset + limit
            return scored[offset:end], len(scored)
