"""
Branch visibility snapshots.

A BranchCriteria is resolved once per request and threaded through every
sub-query of that request. It is a plain value: rebasing or committing on
any branch afterwards does not change a criteria object already handed out.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from termquery.shared.errors import BranchNotFound
from termquery.shared.observability import get_logger
from termquery.shared.observability.metrics import branch_criteria_resolutions_total
from termquery.storage.filters import (
    Exists,
    FilterExpr,
    Range,
    Term,
    all_of,
    any_of,
    negate,
    terms,
)

from .branch import Branch
from .store import BranchStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class BranchClause:
    """Records of one branch in the chain visible at ``time``."""

    path: str
    time: int
    hidden: frozenset = frozenset()

    def to_filter(self) -> FilterExpr:
        return all_of(
            Term("path", self.path),
            Range("start", lte=self.time),
            any_of(negate(Exists("end")), Range("end", gt=self.time)),
            negate(terms("internal_id", self.hidden)),
        )


@dataclass(frozen=True)
class BranchCriteria:
    """Visibility snapshot for one branch; clauses ordered root to leaf."""

    path: str
    clauses: Tuple[BranchClause, ...]

    @property
    def head_time(self) -> int:
        return self.clauses[-1].time

    @property
    def entity_filter(self) -> FilterExpr:
        """Filter selecting exactly the record versions visible on the branch."""
        return any_of(*(clause.to_filter() for clause in self.clauses))

    @property
    def branch_only_filter(self) -> FilterExpr:
        """Visible versions committed on the branch itself."""
        return self.clauses[-1].to_filter()

    def paths(self) -> List[str]:
        return [clause.path for clause in self.clauses]


class BranchCriteriaResolver:
    def __init__(self, store: BranchStore) -> None:
        self.store = store

    def _load(self, path: str) -> Branch:
        branch = self.store.get(path)
        if branch is None:
            branch_criteria_resolutions_total.labels(status="not_found").inc()
            logger.warning("Branch not found", path=path)
            raise BranchNotFound(path)
        return branch

    def resolve(
        self,
        path: str,
        *,
        head_time: Optional[int] = None,
        pending_replaced: Optional[Mapping[str, int]] = None,
    ) -> BranchCriteria:
        """
        Resolve the visibility snapshot of ``path``.

        ``head_time`` reads the branch as of a different head (an open commit
        reads at its own timestamp). ``pending_replaced`` adds ancestor
        versions hidden by that commit but not yet saved on the branch.
        """
        leaf = self._load(path)
        chain = [leaf]
        while chain[-1].parent_path is not None:
            chain.append(self._load(chain[-1].parent_path))

        times = [leaf.head_time if head_time is None else head_time]
        for branch in chain[:-1]:
            times.append(branch.base_as_of(times[-1]))

        clauses = []
        hidden: frozenset = frozenset()
        for index, (branch, time) in enumerate(zip(chain, times)):
            clauses.append(BranchClause(path=branch.path, time=time, hidden=hidden))
            own = branch.replaced_as_of(time)
            if index == 0 and pending_replaced:
                own = own | frozenset(pending_replaced)
            hidden = hidden | own

        criteria = BranchCriteria(path=path, clauses=tuple(reversed(clauses)))
        branch_criteria_resolutions_total.labels(status="success").inc()
        logger.debug(
            "Branch criteria resolved",
            path=path,
            chain=[(c.path, c.time) for c in criteria.clauses],
        )
        return criteria
