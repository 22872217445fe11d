"""
Semantic index: precomputed transitive closure per concept and logical form.

One QueryConcept entry exists per (concept, form) visible on a branch. Entries
are ordinary versioned documents, so branch visibility applies to them exactly
as it does to the raw components they are derived from.

Invariant maintained by build/update/rebuild:

    ancestors(X) = union over p in parents(X) of ({p} | ancestors(p))

Is-a is never stored in ``attributes``; it lives in ``parents``.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import (
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from pydantic import Field

from termquery.branching.commit import Commit
from termquery.branching.criteria import BranchCriteria
from termquery.domain.components import Component, Concepts, characteristic_type, form_label
from termquery.shared.errors import (
    ConceptNotFoundInIndex,
    CycleDetected,
    IndexInvariantViolation,
)
from termquery.shared.observability import get_logger
from termquery.shared.observability.metrics import (
    semantic_index_builds_total,
    semantic_index_entries_written,
)
from termquery.storage.backend import (
    CONCEPTS,
    QUERY_CONCEPTS,
    RELATIONSHIPS,
    DocumentBackend,
    SortKey,
    identifier_order,
)
from termquery.storage.filters import (
    MATCH_ALL,
    Exists,
    FilterExpr,
    Term,
    all_of,
    any_of,
    negate,
    terms,
)

logger = get_logger(__name__)

CONCEPT_ID_SORT = (SortKey("concept_id"),)


class QueryConcept(Component):
    concept_id: str
    stated: bool
    parents: Set[str] = Field(default_factory=set)
    ancestors: Set[str] = Field(default_factory=set)
    attributes: Dict[str, Set[str]] = Field(default_factory=dict)

    def same_closure(self, other: "QueryConcept") -> bool:
        return (
            self.parents == other.parents
            and self.ancestors == other.ancestors
            and self.attributes == other.attributes
        )


def topological_order(
    parents: Mapping[str, Iterable[str]], stated: Optional[bool] = None
) -> List[str]:
    """
    Order concepts so every parent precedes its children (Kahn's algorithm).

    Raises:
        CycleDetected: some concepts never become ready
    """
    nodes: Set[str] = set(parents)
    children: Dict[str, Set[str]] = defaultdict(set)
    pending: Dict[str, int] = {}
    for child, child_parents in parents.items():
        unique = set(child_parents)
        pending[child] = len(unique)
        for parent in unique:
            nodes.add(parent)
            children[parent].add(child)
    for node in nodes:
        pending.setdefault(node, 0)

    ready = deque(sorted((n for n, count in pending.items() if count == 0), key=identifier_order))
    order: List[str] = []
    while ready:
        node = ready.popleft()
        order.append(node)
        for child in children.get(node, ()):
            pending[child] -= 1
            if pending[child] == 0:
                ready.append(child)

    if len(order) < len(nodes):
        stuck = {n for n, count in pending.items() if count > 0}
        logger.error("Is-a cycle detected", concepts=sorted(stuck)[:20], form=form_label(bool(stated)))
        raise CycleDetected(stuck, stated)
    return order


def transitive_closure(
    parents: Mapping[str, Iterable[str]], stated: Optional[bool] = None
) -> Dict[str, Set[str]]:
    """Ancestor sets for every concept mentioned in ``parents``."""
    ancestors: Dict[str, Set[str]] = {}
    for concept_id in topological_order(parents, stated):
        closure: Set[str] = set()
        for parent in parents.get(concept_id, ()):
            closure.add(parent)
            closure |= ancestors[parent]
        ancestors[concept_id] = closure
    return ancestors


class SemanticIndex:
    def __init__(
        self,
        backend: DocumentBackend,
        *,
        batch_size: int = 1000,
        is_a_type_id: str = Concepts.IS_A,
    ) -> None:
        self.backend = backend
        self.batch_size = batch_size
        self.is_a_type_id = is_a_type_id

    # ---------------------------------------------------------------- filters
    @staticmethod
    def entry_filter(
        criteria: BranchCriteria, stated: bool, flt: FilterExpr = MATCH_ALL
    ) -> FilterExpr:
        return all_of(criteria.entity_filter, Term("stated", stated), flt)

    def _relationship_filter(
        self, criteria: BranchCriteria, stated: bool, *clauses: FilterExpr
    ) -> FilterExpr:
        return all_of(
            criteria.entity_filter,
            Term("active", True),
            Term("characteristic_type_id", characteristic_type(stated)),
            *clauses,
        )

    # ------------------------------------------------------------------ reads
    def _single(self, concept_id: str, criteria: BranchCriteria, stated: bool) -> QueryConcept:
        docs, total = self.backend.find(
            QUERY_CONCEPTS,
            self.entry_filter(criteria, stated, Term("concept_id", concept_id)),
            limit=2,
        )
        if total == 0:
            raise ConceptNotFoundInIndex(concept_id, criteria.path, stated)
        if total > 1:
            logger.error(
                "More than one index concept found",
                concept_id=concept_id,
                path=criteria.path,
                matches=total,
            )
            raise IndexInvariantViolation(concept_id, criteria.path, total)
        return QueryConcept.from_document(docs[0])

    def get_parents(self, concept_id: str, criteria: BranchCriteria, stated: bool) -> Set[str]:
        return set(self._single(concept_id, criteria, stated).parents)

    def get_ancestors(self, concept_id: str, criteria: BranchCriteria, stated: bool) -> Set[str]:
        return set(self._single(concept_id, criteria, stated).ancestors)

    def get_entry(self, concept_id: str, criteria: BranchCriteria, stated: bool) -> QueryConcept:
        return self._single(concept_id, criteria, stated)

    def get_ancestors_union(
        self, concept_ids: Iterable[str], criteria: BranchCriteria, stated: bool
    ) -> Set[str]:
        """Union of ancestors; ids without an entry are skipped."""
        result: Set[str] = set()
        flt = self.entry_filter(criteria, stated, terms("concept_id", concept_ids))
        for doc in self.backend.stream(QUERY_CONCEPTS, flt, batch_size=self.batch_size):
            result.update(doc.get("ancestors") or ())
        return result

    def get_descendants_union(
        self, concept_ids: Iterable[str], criteria: BranchCriteria, stated: bool
    ) -> List[str]:
        """Concepts whose ancestor set contains any of ``concept_ids``."""
        return list(self.stream_concept_ids(terms("ancestors", concept_ids), criteria, stated))

    def get_attribute_values(
        self,
        source_ids: Optional[Iterable[str]],
        attribute_type_ids: Optional[Iterable[str]],
        criteria: BranchCriteria,
        stated: bool,
    ) -> List[str]:
        """
        Union of attribute targets of the source concepts.

        ``attribute_type_ids`` of None means any attribute including is-a.
        Is-a targets come from ``parents``. Sorted descending by id so callers
        page deterministically.
        """
        type_ids = None if attribute_type_ids is None else set(attribute_type_ids)
        if type_ids is not None and not type_ids:
            return []

        clauses: List[FilterExpr] = []
        if source_ids is not None:
            clauses.append(terms("concept_id", source_ids))
        if type_ids is not None:
            clauses.append(
                any_of(
                    *(
                        Exists("parents") if t == self.is_a_type_id else Exists(f"attributes.{t}")
                        for t in type_ids
                    )
                )
            )

        values: Set[str] = set()
        flt = self.entry_filter(criteria, stated, all_of(*clauses))
        for doc in self.backend.stream(QUERY_CONCEPTS, flt, batch_size=self.batch_size):
            attributes = doc.get("attributes") or {}
            if type_ids is None:
                values.update(doc.get("parents") or ())
                for targets in attributes.values():
                    values.update(targets)
                continue
            for type_id in type_ids:
                if type_id == self.is_a_type_id:
                    values.update(doc.get("parents") or ())
                else:
                    values.update(attributes.get(type_id) or ())
        return sorted(values, key=identifier_order, reverse=True)

    def find_concept_ids(
        self,
        flt: FilterExpr,
        criteria: BranchCriteria,
        stated: bool,
        *,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[str], int]:
        """One page of matching concept ids, ascending by id, plus the total."""
        docs, total = self.backend.find(
            QUERY_CONCEPTS,
            self.entry_filter(criteria, stated, flt),
            sort=CONCEPT_ID_SORT,
            offset=offset,
            limit=limit,
        )
        return [doc["concept_id"] for doc in docs], total

    def stream_concept_ids(
        self,
        flt: FilterExpr,
        criteria: BranchCriteria,
        stated: bool,
    ) -> Iterator[str]:
        """Stream matching concept ids ascending, in bounded batches."""
        flt = self.entry_filter(criteria, stated, flt)
        for doc in self.backend.stream(
            QUERY_CONCEPTS, flt, sort=CONCEPT_ID_SORT, batch_size=self.batch_size
        ):
            yield doc["concept_id"]

    # ------------------------------------------------------------------ build
    def _is_a_edges(
        self, source_ids: Set[str], criteria: BranchCriteria, stated: bool
    ) -> Dict[str, Set[str]]:
        edges: Dict[str, Set[str]] = defaultdict(set)
        flt = self._relationship_filter(
            criteria,
            stated,
            Term("type_id", self.is_a_type_id),
            terms("source_id", source_ids),
        )
        for doc in self.backend.stream(RELATIONSHIPS, flt, batch_size=self.batch_size):
            edges[doc["source_id"]].add(doc["destination_id"])
        return edges

    def _attribute_edges(
        self, source_ids: Optional[Set[str]], criteria: BranchCriteria, stated: bool
    ) -> Dict[str, Dict[str, Set[str]]]:
        attributes: Dict[str, Dict[str, Set[str]]] = defaultdict(lambda: defaultdict(set))
        clauses = [negate(Term("type_id", self.is_a_type_id))]
        if source_ids is not None:
            clauses.append(terms("source_id", source_ids))
        flt = self._relationship_filter(criteria, stated, *clauses)
        for doc in self.backend.stream(RELATIONSHIPS, flt, batch_size=self.batch_size):
            attributes[doc["source_id"]][doc["type_id"]].add(doc["destination_id"])
        return attributes

    def build(self, concept_id: str, stated: bool, criteria: BranchCriteria) -> QueryConcept:
        """
        Compute one entry from the raw relationships visible under ``criteria``.

        Ancestors are found by walking is-a edges upward one level per query
        until no new concepts appear. The walked subgraph is then ordered
        topologically, which rejects cycles instead of looping.

        Raises:
            CycleDetected: the is-a graph above ``concept_id`` has a cycle
        """
        edges: Dict[str, Set[str]] = {}
        frontier = {concept_id}
        while frontier:
            found = self._is_a_edges(frontier, criteria, stated)
            for source in frontier:
                edges[source] = set(found.get(source, ()))
            frontier = {p for s in frontier for p in edges[s]} - edges.keys()

        ancestors = transitive_closure(edges, stated)
        attributes = self._attribute_edges({concept_id}, criteria, stated).get(concept_id, {})
        return QueryConcept(
            concept_id=concept_id,
            stated=stated,
            parents=edges[concept_id],
            ancestors=ancestors[concept_id],
            attributes={t: set(v) for t, v in attributes.items()},
        )

    def _active_concept_ids(
        self, criteria: BranchCriteria, concept_ids: Optional[Set[str]] = None
    ) -> Set[str]:
        flt = all_of(criteria.entity_filter, Term("active", True))
        if concept_ids is not None:
            flt = all_of(flt, terms("concept_id", concept_ids))
        return {
            doc["concept_id"]
            for doc in self.backend.stream(CONCEPTS, flt, batch_size=self.batch_size)
        }

    def _existing_entries(
        self, criteria: BranchCriteria, stated: bool, concept_ids: Optional[Set[str]] = None
    ) -> Dict[str, QueryConcept]:
        flt = MATCH_ALL if concept_ids is None else terms("concept_id", concept_ids)
        return {
            doc["concept_id"]: QueryConcept.from_document(doc)
            for doc in self.backend.stream(
                QUERY_CONCEPTS, self.entry_filter(criteria, stated, flt), batch_size=self.batch_size
            )
        }

    def _write(
        self,
        commit: Commit,
        stated: bool,
        entries: List[QueryConcept],
        existing: Mapping[str, QueryConcept],
        removed: Iterable[str],
    ) -> int:
        changed = [
            entry
            for entry in entries
            if entry.concept_id not in existing or not existing[entry.concept_id].same_closure(entry)
        ]
        for start in range(0, len(changed), self.batch_size):
            batch = changed[start : start + self.batch_size]
            commit.save_all(
                QUERY_CONCEPTS,
                [entry.model_dump(exclude={"internal_id", "path", "start", "end"}) for entry in batch],
            )
        removed = sorted(removed, key=identifier_order)
        if removed:
            commit.delete_all(QUERY_CONCEPTS, [(concept_id, stated) for concept_id in removed])
        semantic_index_entries_written.labels(form=form_label(stated)).inc(len(changed))
        return len(changed)

    def update(self, commit: Commit, concept_ids: Iterable[str], stated: bool) -> int:
        """
        Rebuild entries for changed concepts and their existing descendants.

        Runs inside an open commit so the new entries share its timestamp.
        Returns the number of entries written.
        """
        form = form_label(stated)
        changed = set(concept_ids)
        if not changed:
            return 0
        try:
            criteria = commit.criteria()
            affected = changed | set(self.get_descendants_union(changed, criteria, stated))
            active = self._active_concept_ids(criteria, affected)
            existing = self._existing_entries(criteria, stated, affected)
            entries = [
                self.build(concept_id, stated, criteria)
                for concept_id in sorted(active, key=identifier_order)
            ]
            written = self._write(
                commit, stated, entries, existing, set(existing) - active
            )
        except Exception:
            semantic_index_builds_total.labels(form=form, status="error").inc()
            raise
        semantic_index_builds_total.labels(form=form, status="success").inc()
        logger.info(
            "Semantic index updated",
            path=commit.path,
            form=form,
            changed=len(changed),
            affected=len(affected),
            written=written,
        )
        return written

    def rebuild(self, commit: Commit, stated: bool) -> int:
        """
        Recompute every entry of one form on the commit's branch.

        Edges are streamed in batches and the closure is computed bottom-up in
        topological order. Entries whose closure is unchanged are not
        rewritten; entries of concepts no longer active are removed.
        """
        form = form_label(stated)
        started = time.perf_counter()
        try:
            criteria = commit.criteria()
            active = self._active_concept_ids(criteria)
            parents: Dict[str, Set[str]] = {concept_id: set() for concept_id in active}
            flt = self._relationship_filter(criteria, stated, Term("type_id", self.is_a_type_id))
            for doc in self.backend.stream(RELATIONSHIPS, flt, batch_size=self.batch_size):
                if doc["source_id"] in active:
                    parents[doc["source_id"]].add(doc["destination_id"])
            ancestors = transitive_closure(parents, stated)
            attributes = self._attribute_edges(None, criteria, stated)

            entries = [
                QueryConcept(
                    concept_id=concept_id,
                    stated=stated,
                    parents=parents[concept_id],
                    ancestors=ancestors[concept_id],
                    attributes={t: set(v) for t, v in attributes.get(concept_id, {}).items()},
                )
                for concept_id in sorted(active, key=identifier_order)
            ]
            existing = self._existing_entries(criteria, stated)
            written = self._write(commit, stated, entries, existing, set(existing) - active)
        except Exception:
            semantic_index_builds_total.labels(form=form, status="error").inc()
            raise
        semantic_index_builds_total.labels(form=form, status="success").inc()
        logger.info(
            "Semantic index rebuilt",
            path=commit.path,
            form=form,
            concepts=len(entries),
            written=written,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return written

    def refresh_branch(self, commit: Commit) -> int:
        """
        Rebuild both forms for every concept changed on the commit's branch.

        Run after a rebase: entries the branch owns were computed against the
        old base and hide the parent's newer entries for the same concepts.
        """
        own = commit.criteria().branch_only_filter
        changed: Set[str] = set()
        for collection, field in (
            (CONCEPTS, "concept_id"),
            (RELATIONSHIPS, "source_id"),
            (QUERY_CONCEPTS, "concept_id"),
        ):
            changed.update(
                doc[field]
                for doc in self.backend.stream(collection, own, batch_size=self.batch_size)
            )
        written = sum(self.update(commit, changed, stated) for stated in (True, False))
        logger.info(
            "Semantic index refreshed",
            path=commit.path,
            changed=len(changed),
            written=written,
        )
        return written
