"""
Commit: the unit of atomic change on one branch.

All versions written through a Commit share its timestamp. Readers filter on
``start <= head``, and the branch head only moves to the commit timestamp once
the block exits cleanly, so a partially written commit is never visible
outside of it.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from termquery.shared.observability import get_logger
from termquery.storage.backend import COMPONENT_KEYS, DocumentBackend
from termquery.storage.filters import Term, Terms, all_of

from .branch import Branch
from .criteria import BranchCriteria, BranchCriteriaResolver

logger = get_logger(__name__)


def _key_of(doc: Mapping[str, Any], key_fields: Sequence[str]) -> Tuple[Any, ...]:
    return tuple(doc.get(f) for f in key_fields)


class Commit:
    def __init__(
        self,
        branch: Branch,
        timestamp: int,
        backend: DocumentBackend,
        resolver: BranchCriteriaResolver,
    ) -> None:
        self.branch = branch
        self.timestamp = timestamp
        self.backend = backend
        self.resolver = resolver
        self.replaced: Dict[str, int] = {}
        self._ended: Dict[str, List[str]] = defaultdict(list)
        self._written: Set[str] = set()
        self._open = True

    @property
    def path(self) -> str:
        return self.branch.path

    @property
    def is_open(self) -> bool:
        return self._open

    def criteria(self) -> BranchCriteria:
        """Visibility as seen from inside the commit, including its own writes."""
        return self.resolver.resolve(
            self.path, head_time=self.timestamp, pending_replaced=self.replaced
        )

    def _check_open(self) -> None:
        if not self._open:
            raise RuntimeError(f"Commit on {self.path} at {self.timestamp} is closed")

    def _visible_versions(
        self, collection: str, keys: Iterable[Tuple[Any, ...]]
    ) -> List[Dict[str, Any]]:
        key_fields = COMPONENT_KEYS[collection]
        wanted = set(keys)
        if not wanted:
            return []
        flt = all_of(
            self.criteria().entity_filter,
            Terms(key_fields[0], frozenset(k[0] for k in wanted)),
        )
        return [
            doc
            for doc in self.backend.stream(collection, flt)
            if _key_of(doc, key_fields) in wanted
        ]

    def _retire(self, collection: str, versions: Sequence[Dict[str, Any]]) -> None:
        same_commit = []
        same_branch = []
        for doc in versions:
            if doc["path"] != self.path:
                self.replaced[doc["internal_id"]] = self.timestamp
            elif doc["start"] == self.timestamp:
                same_commit.append(doc["internal_id"])
            else:
                same_branch.append(doc["internal_id"])
        if same_commit:
            self.backend.delete(collection, Terms("internal_id", frozenset(same_commit)))
        if same_branch:
            self.backend.set_end(collection, same_branch, self.timestamp)
            self._ended[collection].extend(same_branch)

    def save_all(
        self, collection: str, documents: Sequence[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Write new versions of the given components, retiring visible ones."""
        self._check_open()
        if not documents:
            return []
        key_fields = COMPONENT_KEYS[collection]
        self._retire(
            collection,
            self._visible_versions(collection, (_key_of(d, key_fields) for d in documents)),
        )
        stored = []
        for document in documents:
            doc = dict(document)
            doc.pop("end", None)
            doc.update(
                internal_id=uuid.uuid4().hex,
                path=self.path,
                start=self.timestamp,
            )
            stored.append(doc)
        self._written.add(collection)
        self.backend.insert(collection, stored)
        return stored

    def save(self, collection: str, document: Mapping[str, Any]) -> Dict[str, Any]:
        return self.save_all(collection, [document])[0]

    def delete_all(self, collection: str, keys: Iterable[Tuple[Any, ...]]) -> int:
        """End the visible versions of the given components. Returns how many."""
        self._check_open()
        versions = self._visible_versions(collection, keys)
        self._retire(collection, versions)
        return len(versions)

    def delete(self, collection: str, *key: Any) -> bool:
        return self.delete_all(collection, [tuple(key)]) > 0

    def rollback(self) -> None:
        """Remove everything written under this commit's timestamp."""
        if not self._open:
            return
        self._open = False
        for collection in self._written:
            self.backend.delete(
                collection,
                all_of(Term("path", self.path), Term("start", self.timestamp)),
            )
        for collection, internal_ids in self._ended.items():
            self.backend.set_end(collection, internal_ids, None)
        self.replaced.clear()
        logger.warning("Commit rolled back", path=self.path, timestamp=self.timestamp)

    def close(self) -> None:
        self._open = False
