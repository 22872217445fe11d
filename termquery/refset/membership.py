"""Reference set membership lookups."""

from typing import Optional, Set

from termquery.branching.criteria import BranchCriteria
from termquery.shared.observability import get_logger
from termquery.storage.backend import MEMBERS, DocumentBackend
from termquery.storage.filters import Term, all_of

logger = get_logger(__name__)


class ReferenceSetMembership:
    def __init__(self, backend: DocumentBackend, *, batch_size: int = 1000) -> None:
        self.backend = backend
        self.batch_size = batch_size

    def members_of(self, criteria: BranchCriteria, refset_id: Optional[str]) -> Set[str]:
        """
        Referenced component ids of active members visible on the branch.

        A refset id of None means members of any reference set.
        """
        flt = all_of(criteria.entity_filter, Term("active", True))
        if refset_id is not None:
            flt = all_of(flt, Term("refset_id", refset_id))
        members = {
            doc["referenced_component_id"]
            for doc in self.backend.stream(MEMBERS, flt, batch_size=self.batch_size)
        }
        logger.debug(
            "Reference set members resolved",
            path=criteria.path,
            refset_id=refset_id,
            count=len(members),
        )
        return members
