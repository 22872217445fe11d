"""
Free-text description search.

Matches active descriptions visible on the branch in the requested languages.
Results are in relevance order; ties break on shorter terms first.
"""

from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

from termquery.branching.criteria import BranchCriteria
from termquery.shared.observability import get_logger
from termquery.storage.backend import DESCRIPTIONS, DocumentBackend
from termquery.storage.filters import FilterExpr, Term, all_of, terms

logger = get_logger(__name__)

TERM_FIELD = "term"


class DescriptionSearch:
    def __init__(self, backend: DocumentBackend, *, batch_size: int = 10000) -> None:
        self.backend = backend
        self.batch_size = batch_size

    @staticmethod
    def lexical_filter(criteria: BranchCriteria, language_codes: Sequence[str]) -> FilterExpr:
        return all_of(
            criteria.entity_filter,
            Term("active", True),
            terms("language_code", language_codes),
        )

    def search_page(
        self,
        criteria: BranchCriteria,
        term: str,
        language_codes: Sequence[str],
        *,
        offset: int,
        limit: int,
    ) -> Tuple[List[str], int]:
        """
        One page of matching descriptions as concept ids.

        The total counts matching descriptions. A concept matched by several
        descriptions on the same page appears once, at its best position.
        """
        scored, total = self.backend.search_text(
            DESCRIPTIONS,
            TERM_FIELD,
            term,
            self.lexical_filter(criteria, language_codes),
            offset=offset,
            limit=limit,
        )
        concept_ids = list(dict.fromkeys(s.doc["concept_id"] for s in scored))
        logger.info("Lexical search", term=term, total=total, page_ids=len(concept_ids))
        return concept_ids, total

    def all_matching_concept_ids(
        self, criteria: BranchCriteria, term: str, language_codes: Sequence[str]
    ) -> List[str]:
        """Every matching concept id in relevance order, distinct, fetched in batches."""
        flt = self.lexical_filter(criteria, language_codes)
        ordered: Dict[str, None] = {}
        offset = 0
        while True:
            scored, total = self.backend.search_text(
                DESCRIPTIONS, TERM_FIELD, term, flt, offset=offset, limit=self.batch_size
            )
            for s in scored:
                ordered.setdefault(s.doc["concept_id"], None)
            offset += len(scored)
            if not scored or offset >= total:
                break
        logger.info("Lexical matches collected", term=term, descriptions=offset, concepts=len(ordered))
        return list(ordered)
