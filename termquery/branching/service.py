"""
Branch lifecycle: creation, rebase and commits.

Writes on one branch are serialised by a per-branch lock. Reads never take
the lock; they resolve an immutable BranchCriteria instead.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Set, Tuple

from termquery.shared.errors import BranchAlreadyExists, BranchNotFound
from termquery.shared.observability import get_logger
from termquery.shared.observability.metrics import commits_total
from termquery.storage.backend import COMPONENT_KEYS, DocumentBackend
from termquery.storage.filters import Terms, all_of

from .branch import Branch, parent_path_of, validate_path
from .commit import Commit, _key_of
from .criteria import BranchCriteria, BranchCriteriaResolver
from .store import BranchStore

logger = get_logger(__name__)

RebaseHook = Callable[[Commit], None]


def epoch_millis() -> int:
    return int(time.time() * 1000)


class BranchService:
    def __init__(
        self,
        store: BranchStore,
        backend: DocumentBackend,
        *,
        root_path: str = "MAIN",
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self.store = store
        self.backend = backend
        self.root_path = root_path
        self.clock = clock
        self.resolver = BranchCriteriaResolver(store)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._rebase_hooks: List[RebaseHook] = []

    def _lock_for(self, path: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(path, threading.Lock())

    def add_rebase_hook(self, hook: RebaseHook) -> None:
        """Run ``hook`` in a commit on the branch after every rebase."""
        self._rebase_hooks.append(hook)

    def _next_time(self, branch: Branch) -> int:
        # Strictly increasing per branch even when the clock stalls
        return max(self.clock(), branch.head_time + 1)

    # ------------------------------------------------------------------ lookup
    def find(self, path: str) -> Branch:
        branch = self.store.get(path)
        if branch is None:
            raise BranchNotFound(path)
        return branch

    def exists(self, path: str) -> bool:
        return self.store.get(path) is not None

    def children(self, path: str) -> List[Branch]:
        return self.store.children(path)

    def criteria(self, path: str) -> BranchCriteria:
        return self.resolver.resolve(path)

    # ---------------------------------------------------------------- creation
    def create(self, path: str) -> Branch:
        validate_path(path)
        with self._lock_for(path):
            if self.store.get(path) is not None:
                raise BranchAlreadyExists(path)
            parent_path = parent_path_of(path)
            now = self.clock()
            if parent_path is None:
                branch = Branch(
                    path=path,
                    created_time=now,
                    base_time=now,
                    head_time=now,
                    rebases=((now, now),),
                )
            else:
                parent = self.store.get(parent_path)
                if parent is None:
                    raise BranchNotFound(parent_path)
                base = parent.head_time
                created = max(now, base)
                branch = Branch(
                    path=path,
                    created_time=created,
                    base_time=base,
                    head_time=created,
                    rebases=((created, base),),
                )
            self.store.save(branch)
        logger.info("Branch created", path=path, base_time=branch.base_time)
        return branch

    def ensure_root(self) -> Branch:
        branch = self.store.get(self.root_path)
        if branch is not None:
            return branch
        try:
            return self.create(self.root_path)
        except BranchAlreadyExists:
            return self.find(self.root_path)

    # ------------------------------------------------------------------ rebase
    def rebase(self, path: str) -> Branch:
        """
        Move the branch base to the parent's current head.

        Newer parent versions of components the branch has changed itself stay
        hidden from the branch, so its own edits keep winning. Registered
        rebase hooks then run in one commit on the branch; if they fail the
        rebase is reverted.
        """
        with self._lock_for(path):
            branch = self.find(path)
            if branch.parent_path is None:
                raise ValueError(f"Root branch {path} cannot be rebased")
            parent = self.find(branch.parent_path)
            at = self._next_time(branch)
            new_base = parent.head_time

            own_criteria = self.resolver.resolve(path).branch_only_filter
            parent_view = self.resolver.resolve(parent.path, head_time=new_base).entity_filter
            replaced: Dict[str, int] = {}
            for collection, key_fields in COMPONENT_KEYS.items():
                own_keys: Set[Tuple] = {
                    _key_of(doc, key_fields)
                    for doc in self.backend.stream(collection, own_criteria)
                }
                if not own_keys:
                    continue
                flt = all_of(
                    parent_view,
                    Terms(key_fields[0], frozenset(k[0] for k in own_keys)),
                )
                for doc in self.backend.stream(collection, flt):
                    if _key_of(doc, key_fields) in own_keys:
                        replaced[doc["internal_id"]] = at

            rebased = branch.rebased(at, new_base, replaced)
            self.store.save(rebased)
            if self._rebase_hooks:
                try:
                    with self._commit(rebased) as commit:
                        for hook in self._rebase_hooks:
                            hook(commit)
                except Exception:
                    self.store.save(branch)
                    logger.error("Rebase reverted", path=path, base_time=branch.base_time)
                    raise
                rebased = self.find(path)
        logger.info(
            "Branch rebased",
            path=path,
            base_time=new_base,
            hidden_versions=len(replaced),
        )
        return rebased

    # ----------------------------------------------------------------- commits
    @contextmanager
    def open_commit(self, path: str) -> Iterator[Commit]:
        """
        Open a commit on ``path``.

        The branch head and hidden versions advance only when the block exits
        without an exception; otherwise every write is rolled back.
        """
        with self._lock_for(path):
            with self._commit(self.find(path)) as commit:
                yield commit

    @contextmanager
    def _commit(self, branch: Branch) -> Iterator[Commit]:
        # Caller holds the branch lock
        commit = Commit(branch, self._next_time(branch), self.backend, self.resolver)
        logger.debug("Commit opened", path=branch.path, timestamp=commit.timestamp)
        try:
            yield commit
            self.store.save(branch.with_head(commit.timestamp, commit.replaced))
        except Exception as e:
            commit.rollback()
            commits_total.labels(status="rolled_back").inc()
            logger.error(
                "Commit failed",
                path=branch.path,
                timestamp=commit.timestamp,
                error=str(e),
            )
            raise
        finally:
            commit.close()
        commits_total.labels(status="success").inc()
        logger.info("Commit completed", path=branch.path, timestamp=commit.timestamp)

