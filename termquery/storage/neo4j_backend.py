"""
Neo4j-backed DocumentBackend.

Collections map to node labels. Documents are stored as flat property maps:
nested maps are flattened into ``<field>__<key>`` properties and sets become
lists. Filters compile to parameterised Cypher; literal values are never
interpolated into query text.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from neo4j import Driver
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from termquery.shared.errors import BackendUnavailable
from termquery.shared.observability import get_logger, trace_backend_operation

from .backend import (
    CONCEPTS,
    DESCRIPTIONS,
    MEMBERS,
    QUERY_CONCEPTS,
    RELATIONSHIPS,
    DocumentBackend,
    ScoredDocument,
    SortKey,
    tokenize,
)
from .filters import (
    And,
    AnyMapValue,
    Exists,
    FilterExpr,
    MatchAll,
    MatchNone,
    Not,
    Or,
    Range,
    Term,
    Terms,
)

logger = get_logger(__name__)

COLLECTION_LABELS = {
    CONCEPTS: "Concept",
    DESCRIPTIONS: "Description",
    RELATIONSHIPS: "Relationship",
    MEMBERS: "ReferenceSetMember",
    QUERY_CONCEPTS: "QueryConcept",
}

# Properties indexed for lookups, per label
LOOKUP_PROPERTIES = {
    "Concept": ("internal_id", "concept_id", "path"),
    "Description": ("internal_id", "description_id", "concept_id", "path"),
    "Relationship": ("internal_id", "relationship_id", "source_id", "path"),
    "ReferenceSetMember": ("internal_id", "member_id", "refset_id", "path"),
    "QueryConcept": ("internal_id", "concept_id", "path"),
}

ARRAY_FIELDS = frozenset({"parents", "ancestors"})
MAP_SEPARATOR = "__"

_LUCENE_SPECIAL = re.compile(r'([+\-&|!(){}\[\]^"~*?:\\/])')
_SAFE_PARAM = re.compile(r"[^A-Za-z0-9_]")


def default_array_field(field: str) -> bool:
    return field in ARRAY_FIELDS or field.startswith("attributes.")


def escape_lucene(token: str) -> str:
    return _LUCENE_SPECIAL.sub(r"\\\1", token)


def build_prefix_query(text: str) -> Optional[str]:
    """Lucene query requiring every word of ``text`` as a term prefix."""
    tokens = tokenize(text)
    if not tokens:
        return None
    return " AND ".join(f"{escape_lucene(token)}*" for token in tokens)


def flatten_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in doc.items():
        if value is None:
            continue
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                flat[f"{key}{MAP_SEPARATOR}{sub_key}"] = _property_value(sub_value)
        else:
            flat[key] = _property_value(value)
    return flat


def unflatten_document(props: Dict[str, Any]) -> Dict[str, Any]:
    doc: Dict[str, Any] = {}
    for key, value in props.items():
        if MAP_SEPARATOR in key:
            field, sub_key = key.split(MAP_SEPARATOR, 1)
            doc.setdefault(field, {})[sub_key] = value
        else:
            doc[key] = value
    return doc


def _property_value(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, tuple):
        return list(value)
    return value


def _property(alias: str, field: str) -> str:
    return f"{alias}.`{field.replace('.', MAP_SEPARATOR)}`"


class CypherFilterCompiler:
    """Compile a FilterExpr into a Cypher boolean expression plus parameters."""

    def __init__(
        self,
        alias: str = "n",
        *,
        is_array_field: Callable[[str], bool] = default_array_field,
    ) -> None:
        self.alias = alias
        self.is_array_field = is_array_field
        self.params: Dict[str, Any] = {}
        self._counter = 0

    def _param(self, field: str, value: Any) -> str:
        self._counter += 1
        name = f"filter_{_SAFE_PARAM.sub('_', field)}_{self._counter}"
        if isinstance(value, (set, frozenset)):
            value = sorted(value)
        self.params[name] = value
        return f"${name}"

    def compile(self, flt: FilterExpr) -> str:
        if isinstance(flt, MatchAll):
            return "true"
        if isinstance(flt, MatchNone):
            return "false"
        if isinstance(flt, And):
            return "(" + " AND ".join(self.compile(c) for c in flt.clauses) + ")"
        if isinstance(flt, Or):
            return "(" + " OR ".join(self.compile(c) for c in flt.clauses) + ")"
        if isinstance(flt, Not):
            return f"(NOT {self.compile(flt.clause)})"
        # Leaves are null-safe so NOT over a missing property behaves like
        # the in-memory evaluation.
        return f"coalesce({self._leaf(flt)}, false)"

    def _leaf(self, flt: FilterExpr) -> str:
        a = self.alias
        if isinstance(flt, Term):
            prop = _property(a, flt.field)
            param = self._param(flt.field, flt.value)
            if self.is_array_field(flt.field):
                return f"{param} IN {prop}"
            return f"{prop} = {param}"
        if isinstance(flt, Terms):
            if not flt.values:
                return "false"
            prop = _property(a, flt.field)
            param = self._param(flt.field, flt.values)
            if self.is_array_field(flt.field):
                return f"any(x IN coalesce({prop}, []) WHERE x IN {param})"
            return f"{prop} IN {param}"
        if isinstance(flt, Range):
            prop = _property(a, flt.field)
            parts = []
            for op, bound in ((">", flt.gt), (">=", flt.gte), ("<", flt.lt), ("<=", flt.lte)):
                if bound is not None:
                    parts.append(f"{prop} {op} {self._param(flt.field, bound)}")
            return "(" + " AND ".join(parts) + ")" if parts else f"{prop} IS NOT NULL"
        if isinstance(flt, Exists):
            prop = _property(a, flt.field)
            if self.is_array_field(flt.field):
                return f"size(coalesce({prop}, [])) > 0"
            return f"{prop} IS NOT NULL"
        if isinstance(flt, AnyMapValue):
            if not flt.values:
                return "false"
            prefix = self._param(flt.field, f"{flt.field}{MAP_SEPARATOR}")
            param = self._param(flt.field, flt.values)
            return (
                f"any(k IN keys({a}) WHERE k STARTS WITH {prefix} "
                f"AND any(x IN {a}[k] WHERE x IN {param}))"
            )
        raise TypeError(f"Unsupported filter expression: {type(flt).__name__}")


def compile_filter(flt: FilterExpr, alias: str = "n") -> Tuple[str, Dict[str, Any]]:
    compiler = CypherFilterCompiler(alias)
    return compiler.compile(flt), compiler.params


def _order_clause(sort: Sequence[SortKey], alias: str = "n") -> str:
    if not sort:
        return ""
    parts = []
    for key in sort:
        direction = "DESC" if key.descending else "ASC"
        prop = _property(alias, key.field)
        parts.append(f"size(toString({prop})) {direction}, {prop} {direction}")
    return "ORDER BY " + ", ".join(parts)


class Neo4jBackend(DocumentBackend):
    system = "neo4j"

    def __init__(
        self,
        driver: Driver,
        *,
        database: Optional[str] = None,
        fulltext_index: str = "description_term_index",
        fetch_size: int = 1000,
    ) -> None:
        self.driver = driver
        self.database = database
        self.fulltext_index = fulltext_index
        self.fetch_size = fetch_size

    # ------------------------------------------------------------------ helpers
    @contextmanager
    def _session(self):
        kwargs: Dict[str, Any] = {"fetch_size": self.fetch_size}
        if self.database:
            kwargs["database"] = self.database
        try:
            with self.driver.session(**kwargs) as session:
                yield session
        except (ServiceUnavailable, SessionExpired) as exc:
            logger.error("Neo4j unavailable", error=str(exc))
            raise BackendUnavailable(f"Neo4j unavailable: {exc}") from exc

    @staticmethod
    def _label(collection: str) -> str:
        try:
            return COLLECTION_LABELS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    def ensure_schema(self) -> None:
        """Create lookup indexes and the description full-text index."""
        with self._session() as session:
            for label, properties in LOOKUP_PROPERTIES.items():
                for prop in properties:
                    name = f"{label.lower()}_{prop}"
                    session.run(
                        f"CREATE INDEX {name} IF NOT EXISTS FOR (n:{label}) ON (n.{prop})"
                    )
            session.run(
                f"CREATE FULLTEXT INDEX {self.fulltext_index} IF NOT EXISTS "
                "FOR (n:Description) ON EACH [n.term]"
            )
        logger.info("Neo4j schema ensured", fulltext_index=self.fulltext_index)

    # ------------------------------------------------------------------ writes
    def insert(self, collection: str, documents: Sequence[Dict[str, Any]]) -> None:
        label = self._label(collection)
        query = f"UNWIND $docs AS doc CREATE (n:{label}) SET n = doc"
        with trace_backend_operation(collection, "insert", self.system):
            with self._session() as session:
                for start in range(0, len(documents), self.fetch_size):
                    batch = [
                        flatten_document(doc)
                        for doc in documents[start : start + self.fetch_size]
                    ]
                    session.run(query, docs=batch)

    def set_end(
        self, collection: str, internal_ids: Sequence[str], end: Optional[int]
    ) -> int:
        if not internal_ids:
            return 0
        label = self._label(collection)
        query = f"""
        MATCH (n:{label}) WHERE n.internal_id IN $ids
        SET n.end = $end
        RETURN count(n) AS updated
        """
        with trace_backend_operation(collection, "set_end", self.system):
            with self._session() as session:
                record = session.run(query, ids=list(internal_ids), end=end).single()
        return record["updated"] if record else 0

    def delete(self, collection: str, flt: FilterExpr) -> int:
        label = self._label(collection)
        where, params = compile_filter(flt)
        query = f"MATCH (n:{label}) WHERE {where} DELETE n RETURN count(*) AS removed"
        with trace_backend_operation(collection, "delete", self.system):
            with self._session() as session:
                record = session.run(query, **params).single()
        return record["removed"] if record else 0

    # ------------------------------------------------------------------- reads
    def stream(
        self,
        collection: str,
        flt: FilterExpr,
        *,
        sort: Sequence[SortKey] = (),
        batch_size: int = 1000,
    ) -> Iterator[Dict[str, Any]]:
        label = self._label(collection)
        where, params = compile_filter(flt)
        query = f"MATCH (n:{label}) WHERE {where} RETURN n {_order_clause(sort)}"
        logger.debug("stream query", collection=collection, query=query)
        with trace_backend_operation(collection, "stream", self.system):
            with self._session() as session:
                for record in session.run(query, **params):
                    yield unflatten_document(dict(record["n"]))

    def find(
        self,
        collection: str,
        flt: FilterExpr,
        *,
        sort: Sequence[SortKey] = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        label = self._label(collection)
        where, params = compile_filter(flt)
        window = "SKIP $offset"
        if limit is not None:
            window += " LIMIT $limit"
        query = f"MATCH (n:{label}) WHERE {where} RETURN n {_order_clause(sort)} {window}"
        count_query = f"MATCH (n:{label}) WHERE {where} RETURN count(n) AS total"
        with trace_backend_operation(collection, "find", self.system):
            with self._session() as session:
                rows = session.run(query, offset=offset, limit=limit, **params)
                docs = [unflatten_document(dict(record["n"])) for record in rows]
                record = session.run(count_query, **params).single()
        total = record["total"] if record else len(docs)
        return docs, total

    def count(self, collection: str, flt: FilterExpr) -> int:
        label = self._label(collection)
        where, params = compile_filter(flt)
        query = f"MATCH (n:{label}) WHERE {where} RETURN count(n) AS total"
        with trace_backend_operation(collection, "count", self.system):
            with self._session() as session:
                record = session.run(query, **params).single()
        return record["total"] if record else 0

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
        label = self._label(collection)
        if label != "Description" or field != "term":
            raise ValueError("Full-text search is only indexed for Description.term")
        lucene = build_prefix_query(text)
        if lucene is None:
            return [], 0
        where, params = compile_filter(flt)
        params.update({"index_name": self.fulltext_index, "search_query": lucene})
        window = "SKIP $offset"
        if limit is not None:
            window += " LIMIT $limit"
        query = f"""
        CALL db.index.fulltext.queryNodes($index_name, $search_query)
        YIELD node AS n, score
        WHERE n:{label} AND {where}
        RETURN n, score
        ORDER BY score DESC, size(n.term) ASC, n.description_id ASC
        {window}
        """
        count_query = f"""
        CALL db.index.fulltext.queryNodes($index_name, $search_query)
        YIELD node AS n
        WHERE n:{label} AND {where}
        RETURN count(n) AS total
        """
        with trace_backend_operation(collection, "search_text", self.system):
            with self._session() as session:
                rows = session.run(query, offset=offset, limit=limit, **params)
                scored = [
                    ScoredDocument(
                        doc=unflatten_document(dict(record["n"])),
                        score=float(record["score"]),
                    )
                    for record in rows
                ]
                record = session.run(count_query, **params).single()
        total = record["total"] if record else len(scored)
        return scored, total
