"""
Concept service: versioned concept reads and writes.

Reads join a concept with its visible descriptions (plus language
acceptability) and relationships. Writes go through one commit per call and
update the semantic index of both forms inside that commit.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from termquery.branching.criteria import BranchCriteria
from termquery.branching.service import BranchService
from termquery.domain.components import (
    Concept,
    Concepts,
    ConceptSummary,
    Description,
    Relationship,
)
from termquery.index.semantic_index import CONCEPT_ID_SORT, SemanticIndex
from termquery.shared.errors import ComponentExists, ComponentNotFound
from termquery.shared.observability import get_logger
from termquery.storage.backend import (
    CONCEPTS,
    DESCRIPTIONS,
    MEMBERS,
    RELATIONSHIPS,
    DocumentBackend,
)
from termquery.storage.filters import Term, all_of, terms

logger = get_logger(__name__)


def _most_specific_first(docs: Iterable[Mapping]) -> List[Mapping]:
    return sorted(
        docs,
        key=lambda d: (-len(d.get("path", "").split("/")), -(d.get("start") or 0)),
    )


class ConceptService:
    def __init__(
        self,
        backend: DocumentBackend,
        branches: BranchService,
        index: SemanticIndex,
        *,
        batch_size: int = 1000,
    ) -> None:
        self.backend = backend
        self.branches = branches
        self.index = index
        self.batch_size = batch_size
        branches.add_rebase_hook(index.refresh_branch)

    # ------------------------------------------------------------------ reads
    def find(self, concept_id: str, path: str) -> Optional[Concept]:
        criteria = self.branches.criteria(path)
        return self.find_in(concept_id, criteria)

    def find_in(self, concept_id: str, criteria: BranchCriteria) -> Optional[Concept]:
        docs, _ = self.backend.find(
            CONCEPTS, all_of(criteria.entity_filter, Term("concept_id", concept_id))
        )
        if not docs:
            logger.info("Find concept", concept_id=concept_id, path=criteria.path, found=False)
            return None
        concept = Concept.from_document(_most_specific_first(docs)[0])
        self._join(criteria, {concept.concept_id: concept})
        logger.info("Find concept", concept_id=concept_id, path=criteria.path, found=True)
        return concept

    def find_all(
        self, path: str, *, offset: int = 0, limit: Optional[int] = None
    ) -> Tuple[List[Concept], int]:
        criteria = self.branches.criteria(path)
        docs, total = self.backend.find(
            CONCEPTS,
            criteria.entity_filter,
            sort=CONCEPT_ID_SORT,
            offset=offset,
            limit=limit,
        )
        concepts = {doc["concept_id"]: Concept.from_document(doc) for doc in docs}
        self._join(criteria, concepts)
        return list(concepts.values()), total

    def _join(self, criteria: BranchCriteria, concepts: Dict[str, Concept]) -> None:
        if not concepts:
            return
        for concept in concepts.values():
            concept.descriptions = []
            concept.relationships = []

        descriptions: Dict[str, Description] = {}
        flt = all_of(criteria.entity_filter, terms("concept_id", concepts))
        for doc in self.backend.stream(DESCRIPTIONS, flt, batch_size=self.batch_size):
            description = Description.from_document(doc)
            descriptions[description.description_id] = description
            concepts[description.concept_id].descriptions.append(description)

        if descriptions:
            flt = all_of(
                criteria.entity_filter,
                Term("active", True),
                terms("referenced_component_id", descriptions),
            )
            for doc in self.backend.stream(MEMBERS, flt, batch_size=self.batch_size):
                acceptability = (doc.get("additional_fields") or {}).get("acceptabilityId")
                if acceptability:
                    descriptions[doc["referenced_component_id"]].acceptability[
                        doc["refset_id"]
                    ] = acceptability

        flt = all_of(criteria.entity_filter, terms("source_id", concepts))
        for doc in self.backend.stream(RELATIONSHIPS, flt, batch_size=self.batch_size):
            relationship = Relationship.from_document(doc)
            concepts[relationship.source_id].relationships.append(relationship)

    # -------------------------------------------------------------- summaries
    def _fsn_terms(
        self, criteria: BranchCriteria, concept_ids: Iterable[str], language_codes: Sequence[str]
    ) -> Dict[str, str]:
        flt = all_of(
            criteria.entity_filter,
            Term("active", True),
            Term("type_id", Concepts.FSN),
            terms("language_code", language_codes),
            terms("concept_id", concept_ids),
        )
        rank = {code: i for i, code in enumerate(language_codes)}
        best: Dict[str, Tuple[int, str]] = {}
        for doc in self.backend.stream(DESCRIPTIONS, flt, batch_size=self.batch_size):
            candidate = (rank.get(doc["language_code"], len(rank)), doc["term"])
            current = best.get(doc["concept_id"])
            if current is None or candidate < current:
                best[doc["concept_id"]] = candidate
        return {concept_id: term for concept_id, (_, term) in best.items()}

    def _summaries(
        self, criteria: BranchCriteria, docs: Iterable[Mapping], language_codes: Sequence[str]
    ) -> Dict[str, ConceptSummary]:
        latest: Dict[str, Mapping] = {}
        for doc in _most_specific_first(docs):
            latest.setdefault(doc["concept_id"], doc)
        fsns = self._fsn_terms(criteria, latest, language_codes)
        return {
            concept_id: ConceptSummary(
                concept_id=concept_id,
                active=doc.get("active", True),
                definition_status_id=doc.get("definition_status_id", Concepts.PRIMITIVE),
                module_id=doc.get("module_id"),
                fsn=fsns.get(concept_id),
            )
            for concept_id, doc in latest.items()
        }

    def find_summaries(
        self,
        criteria: BranchCriteria,
        concept_ids: Iterable[str],
        language_codes: Sequence[str],
    ) -> Dict[str, ConceptSummary]:
        """Summaries keyed by concept id; ids not visible on the branch are absent."""
        flt = all_of(criteria.entity_filter, terms("concept_id", concept_ids))
        docs = self.backend.stream(CONCEPTS, flt, batch_size=self.batch_size)
        return self._summaries(criteria, docs, language_codes)

    def find_all_summaries(
        self,
        criteria: BranchCriteria,
        language_codes: Sequence[str],
        *,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[ConceptSummary], int]:
        docs, total = self.backend.find(
            CONCEPTS,
            criteria.entity_filter,
            sort=CONCEPT_ID_SORT,
            offset=offset,
            limit=limit,
        )
        summaries = self._summaries(criteria, docs, language_codes)
        return [summaries[doc["concept_id"]] for doc in docs], total

    def find_concept_ids(
        self,
        criteria: BranchCriteria,
        *,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[str], int]:
        docs, total = self.backend.find(
            CONCEPTS, criteria.entity_filter, sort=CONCEPT_ID_SORT, offset=offset, limit=limit
        )
        return [doc["concept_id"] for doc in docs], total

    # ----------------------------------------------------------------- writes
    def create(self, concept: Concept, path: str) -> Concept:
        if self.find(concept.concept_id, path) is not None:
            raise ComponentExists("Concept", concept.concept_id, path)
        return self._save(concept, path)

    def update(self, concept: Concept, path: str) -> Concept:
        """Replace a concept; descriptions and relationships left out are deleted."""
        existing = self.find(concept.concept_id, path)
        if existing is None:
            raise ComponentNotFound("Concept", concept.concept_id, path)
        return self._save(concept, path, existing)

    def delete(self, concept_id: str, path: str) -> None:
        existing = self.find(concept_id, path)
        if existing is None:
            raise ComponentNotFound("Concept", concept_id, path)
        with self.branches.open_commit(path) as commit:
            commit.delete_all(
                DESCRIPTIONS, [(d.description_id,) for d in existing.descriptions]
            )
            commit.delete_all(
                RELATIONSHIPS, [(r.relationship_id,) for r in existing.relationships]
            )
            commit.delete(CONCEPTS, concept_id)
            self._update_index(commit, [concept_id])
        logger.info("Concept deleted", concept_id=concept_id, path=path)

    def _save(self, concept: Concept, path: str, existing: Optional[Concept] = None) -> Concept:
        for description in concept.descriptions:
            description.concept_id = concept.concept_id
        for relationship in concept.relationships:
            relationship.source_id = concept.concept_id

        with self.branches.open_commit(path) as commit:
            if existing is not None:
                kept_descriptions = {d.description_id for d in concept.descriptions}
                kept_relationships = {r.relationship_id for r in concept.relationships}
                commit.delete_all(
                    DESCRIPTIONS,
                    [
                        (d.description_id,)
                        for d in existing.descriptions
                        if d.description_id not in kept_descriptions
                    ],
                )
                commit.delete_all(
                    RELATIONSHIPS,
                    [
                        (r.relationship_id,)
                        for r in existing.relationships
                        if r.relationship_id not in kept_relationships
                    ],
                )

            stored = commit.save(CONCEPTS, concept.to_document())
            descriptions = commit.save_all(
                DESCRIPTIONS, [d.to_document() for d in concept.descriptions]
            )
            relationships = commit.save_all(
                RELATIONSHIPS, [r.to_document() for r in concept.relationships]
            )
            self._update_index(commit, [concept.concept_id])

        saved = Concept.from_document(stored)
        saved.descriptions = [Description.from_document(d) for d in descriptions]
        saved.relationships = [Relationship.from_document(r) for r in relationships]
        logger.info(
            "Concept saved",
            concept_id=saved.concept_id,
            path=path,
            descriptions=len(saved.descriptions),
            relationships=len(saved.relationships),
        )
        return saved

    def _update_index(self, commit, concept_ids: Iterable[str]) -> None:
        for stated in (True, False):
            self.index.update(commit, concept_ids, stated)
