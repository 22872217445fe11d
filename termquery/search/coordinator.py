"""
Search coordinator: the entry point for concept searches.

Branch criteria are resolved once per request and reused by every sub-query.
Dispatch is one of:

    all       no lexical and no logical criteria: page over all concepts
    lexical   free text only: relevance-ranked descriptions, paged directly
    logical   concept ids, constraint expression or primitive clauses
    combined  full lexical ordering intersected with the logical match set

In the combined mode the lexical ordering is authoritative; logical criteria
only remove ids and never re-rank them.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from termquery.branching.criteria import BranchCriteria
from termquery.branching.service import BranchService
from termquery.concepts.service import ConceptService
from termquery.domain.components import ConceptSummary
from termquery.ecl.ast import descendant_of
from termquery.ecl.evaluator import ExpressionConstraintEvaluator
from termquery.ecl.results import UNCONSTRAINED, EmptySet, Result
from termquery.index.semantic_index import CONCEPT_ID_SORT, SemanticIndex
from termquery.shared.config import SearchConfig
from termquery.shared.errors import InvalidPage
from termquery.shared.observability import get_logger, request_context, trace_search
from termquery.shared.observability.metrics import short_term_prefix_total
from termquery.storage.backend import CONCEPTS, DocumentBackend
from termquery.storage.filters import MATCH_ALL, Term, all_of, terms

from .lexical import DescriptionSearch
from .paging import Page, PageRequest, empty_page, ordered_intersection, page_of
from .query import ConceptQuery

logger = get_logger(__name__)


class SearchCoordinator:
    def __init__(
        self,
        backend: DocumentBackend,
        branches: BranchService,
        concepts: ConceptService,
        index: SemanticIndex,
        evaluator: ExpressionConstraintEvaluator,
        lexical: DescriptionSearch,
        *,
        config: Optional[SearchConfig] = None,
    ) -> None:
        self.backend = backend
        self.branches = branches
        self.concepts = concepts
        self.index = index
        self.evaluator = evaluator
        self.lexical = lexical
        self.config = config or SearchConfig()

    # ------------------------------------------------------------- public API
    def search(
        self, query: ConceptQuery, path: str, page: PageRequest
    ) -> Page[ConceptSummary]:
        """Page of concept summaries, in lexical order when a term was given."""
        self._check_page(page)
        with request_context(branch=path, stated=query.stated):
            criteria = self.branches.criteria(path)
            language_codes = self._language_codes(query)
            id_page = self._search_ids(query, criteria, page)
            if id_page is None:
                with trace_search("all", path, query.stated):
                    summaries, total = self.concepts.find_all_summaries(
                        criteria, language_codes, offset=page.offset, limit=page.size
                    )
                return Page(items=summaries, number=page.number, size=page.size, total=total)
            found = self.concepts.find_summaries(criteria, id_page.items, language_codes)
            return id_page.map([found[i] for i in id_page.items if i in found])

    def search_for_ids(self, query: ConceptQuery, path: str, page: PageRequest) -> Page[str]:
        self._check_page(page)
        with request_context(branch=path, stated=query.stated):
            criteria = self.branches.criteria(path)
            id_page = self._search_ids(query, criteria, page)
            if id_page is None:
                with trace_search("all", path, query.stated):
                    ids, total = self.concepts.find_concept_ids(
                        criteria, offset=page.offset, limit=page.size
                    )
                return Page(items=ids, number=page.number, size=page.size, total=total)
            return id_page

    def find_descendants(
        self, concept_id: str, path: str, stated: bool, page: PageRequest
    ) -> Page[ConceptSummary]:
        query = ConceptQuery(stated=stated).with_ecl(descendant_of(concept_id))
        return self.search(query, path, page)

    # -------------------------------------------------------------- dispatch
    def _check_page(self, page: PageRequest) -> None:
        if page.size > self.config.max_page_size:
            raise InvalidPage(
                f"Page size {page.size} exceeds the maximum of {self.config.max_page_size}"
            )

    def _language_codes(self, query: ConceptQuery) -> Tuple[str, ...]:
        if query.language_codes:
            return query.language_codes
        return tuple(self.config.default_language_codes)

    def _search_ids(
        self, query: ConceptQuery, criteria: BranchCriteria, page: PageRequest
    ) -> Optional[Page[str]]:
        term = query.term_prefix
        if term is not None and len(term) < self.config.min_term_length:
            with trace_search("short_term", criteria.path, query.stated):
                short_term_prefix_total.inc()
                logger.info("Term prefix too short", term_length=len(term))
                return empty_page(page)

        lexical = term is not None
        logical = query.has_logical_conditions
        if not lexical and not logical:
            return None

        mode = "combined" if lexical and logical else ("lexical" if lexical else "logical")
        with trace_search(mode, criteria.path, query.stated):
            if not logical:
                return self._lexical_page(query, criteria, page)
            if not lexical:
                return self._logical_page(query, criteria, page)
            return self._combined_page(query, criteria, page)

    def _lexical_page(
        self, query: ConceptQuery, criteria: BranchCriteria, page: PageRequest
    ) -> Page[str]:
        ids, total = self.lexical.search_page(
            criteria,
            query.term_prefix,
            self._language_codes(query),
            offset=page.offset,
            limit=page.size,
        )
        return Page(items=ids, number=page.number, size=page.size, total=total, ordered=True)

    def _logical_page(
        self, query: ConceptQuery, criteria: BranchCriteria, page: PageRequest
    ) -> Page[str]:
        if query.concept_ids:
            # Pass-through, caller order kept
            return page_of(list(query.concept_ids), page)

        if query.ecl is not None:
            if self._inactive_unavailable(query):
                return empty_page(page)
            logger.info("Constraint search", stated=query.stated)
            if query.definition_status_filter:
                # Full match set is materialised before the status filter
                matched = self._result_ids(
                    self.evaluator.evaluate(query.ecl, criteria, query.stated),
                    criteria,
                    query.stated,
                )
                return page_of(self._filter_by_definition_status(matched, query, criteria), page)
            ids, total = self.evaluator.select_page(
                query.ecl, criteria, query.stated, offset=page.offset, limit=page.size
            )
            return Page(items=ids, number=page.number, size=page.size, total=total)

        if query.active_filter is False or query.definition_status_filter:
            candidates = self._primitive_candidates(query, criteria)
            return page_of(self._filter_by_definition_status(candidates, query, criteria), page)

        ids, total = self.index.find_concept_ids(
            query.logical_filter,
            criteria,
            query.stated,
            offset=page.offset,
            limit=page.size,
        )
        return Page(items=ids, number=page.number, size=page.size, total=total)

    def _combined_page(
        self, query: ConceptQuery, criteria: BranchCriteria, page: PageRequest
    ) -> Page[str]:
        logger.info("Lexical search before logical", term=query.term_prefix)
        lexical_ids = self.lexical.all_matching_concept_ids(
            criteria, query.term_prefix, self._language_codes(query)
        )
        if not lexical_ids:
            return empty_page(page, ordered=True)

        if query.concept_ids:
            logical_ids: List[str] = list(query.concept_ids)
        elif query.ecl is not None:
            if self._inactive_unavailable(query):
                logical_ids = []
            else:
                result = self.evaluator.evaluate(
                    query.ecl, criteria, query.stated, id_filter=lexical_ids
                )
                logical_ids = self._result_ids(result, criteria, query.stated, lexical_ids)
        else:
            logical_ids = self._primitive_candidates(query, criteria, lexical_ids)

        filtered = self._filter_by_definition_status(logical_ids, query, criteria)
        logger.info(
            "Lexical and logical results",
            lexical=len(lexical_ids),
            logical=len(filtered),
        )
        return ordered_intersection(lexical_ids, set(filtered), page)

    # --------------------------------------------------------------- helpers
    @staticmethod
    def _inactive_unavailable(query: ConceptQuery) -> bool:
        # Only active concepts are indexed, so inactive concepts cannot be
        # matched together with relationship conditions.
        if query.active_filter is False and query.has_relationship_conditions:
            logger.info("Inactive concepts requested with relationship conditions")
            return True
        return False

    def _result_ids(
        self,
        result: Result,
        criteria: BranchCriteria,
        stated: bool,
        id_filter: Optional[Sequence[str]] = None,
    ) -> List[str]:
        if isinstance(result, EmptySet):
            return []
        if result is UNCONSTRAINED:
            flt = MATCH_ALL if id_filter is None else terms("concept_id", id_filter)
            return list(self.index.stream_concept_ids(flt, criteria, stated))
        return list(result.ids)

    def _primitive_candidates(
        self,
        query: ConceptQuery,
        criteria: BranchCriteria,
        id_filter: Optional[Sequence[str]] = None,
    ) -> List[str]:
        id_clause = MATCH_ALL if id_filter is None else terms("concept_id", id_filter)
        if query.active_filter is False:
            if self._inactive_unavailable(query):
                return []
            flt = all_of(criteria.entity_filter, Term("active", False), id_clause)
            return self._stream_concept_ids(flt)
        return list(
            self.index.stream_concept_ids(
                all_of(query.logical_filter, id_clause), criteria, query.stated
            )
        )

    def _stream_concept_ids(self, flt) -> List[str]:
        return list(
            dict.fromkeys(
                doc["concept_id"]
                for doc in self.backend.stream(
                    CONCEPTS, flt, sort=CONCEPT_ID_SORT, batch_size=self.config.large_page_size
                )
            )
        )

    def _filter_by_definition_status(
        self, concept_ids: Iterable[str], query: ConceptQuery, criteria: BranchCriteria
    ) -> List[str]:
        concept_ids = list(concept_ids)
        status = query.definition_status_filter
        if not status or not concept_ids:
            return concept_ids
        flt = all_of(
            criteria.entity_filter,
            Term("definition_status_id", status),
            terms("concept_id", concept_ids),
        )
        matching = {
            doc["concept_id"]
            for doc in self.backend.stream(
                CONCEPTS, flt, batch_size=self.config.large_page_size
            )
        }
        return [concept_id for concept_id in concept_ids if concept_id in matching]
