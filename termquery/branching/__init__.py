"""
Branching and time-travel visibility.
Branch records, branch stores, visibility criteria and single-timestamp commits.
"""

from .branch import Branch, parent_path_of, validate_path
from .commit import Commit
from .criteria import BranchClause, BranchCriteria, BranchCriteriaResolver
from .service import BranchService, epoch_millis
from .store import BranchStore, InMemoryBranchStore, Neo4jBranchStore

__all__ = [
    "Branch",
    "parent_path_of",
    "validate_path",
    "BranchStore",
    "InMemoryBranchStore",
    "Neo4jBranchStore",
    "BranchClause",
    "BranchCriteria",
    "BranchCriteriaResolver",
    "BranchService",
    "Commit",
    "epoch_millis",
]
