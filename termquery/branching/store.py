"""
Branch stores.

The store only persists Branch records; visibility is computed by
BranchCriteriaResolver. Saving replaces the whole record, so readers always
see either the old or the new head, never a mix.
"""

from __future__ import annotations

import json
import threading
from typing import Dict, List, Optional

from neo4j import Driver
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from termquery.shared.errors import BackendUnavailable
from termquery.shared.observability import get_logger

from .branch import Branch, parent_path_of

logger = get_logger(__name__)


class BranchStore:
    """Abstract branch persistence."""

    def get(self, path: str) -> Optional[Branch]:
        raise NotImplementedError

    def save(self, branch: Branch) -> None:
        raise NotImplementedError

    def children(self, path: str) -> List[Branch]:
        raise NotImplementedError


class InMemoryBranchStore(BranchStore):
    def __init__(self) -> None:
        self._branches: Dict[str, Branch] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> Optional[Branch]:
        with self._lock:
            return self._branches.get(path)

    def save(self, branch: Branch) -> None:
        with self._lock:
            self._branches[branch.path] = branch

    def children(self, path: str) -> List[Branch]:
        with self._lock:
            return sorted(
                (b for b in self._branches.values() if parent_path_of(b.path) == path),
                key=lambda b: b.path,
            )


class Neo4jBranchStore(BranchStore):
    """Branches as (:Branch) nodes; history and replaced versions stored as JSON."""

    def __init__(self, driver: Driver, *, database: Optional[str] = None) -> None:
        self.driver = driver
        self.database = database

    def _session(self):
        if self.database:
            return self.driver.session(database=self.database)
        return self.driver.session()

    @staticmethod
    def _to_branch(node) -> Branch:
        props = dict(node)
        return Branch(
            path=props["path"],
            created_time=props["created_time"],
            base_time=props["base_time"],
            head_time=props["head_time"],
            rebases=tuple(tuple(pair) for pair in json.loads(props.get("rebases") or "[]")),
            versions_replaced=json.loads(props.get("versions_replaced") or "{}"),
        )

    def get(self, path: str) -> Optional[Branch]:
        query = "MATCH (b:Branch {path: $path}) RETURN b"
        try:
            with self._session() as session:
                record = session.run(query, path=path).single()
        except (ServiceUnavailable, SessionExpired) as exc:
            raise BackendUnavailable(f"Neo4j unavailable: {exc}") from exc
        return self._to_branch(record["b"]) if record else None

    def save(self, branch: Branch) -> None:
        query = """
        MERGE (b:Branch {path: $path})
        SET b.created_time = $created_time,
            b.base_time = $base_time,
            b.head_time = $head_time,
            b.rebases = $rebases,
            b.versions_replaced = $versions_replaced
        """
        try:
            with self._session() as session:
                session.run(
                    query,
                    path=branch.path,
                    created_time=branch.created_time,
                    base_time=branch.base_time,
                    head_time=branch.head_time,
                    rebases=json.dumps([list(pair) for pair in branch.rebases]),
                    versions_replaced=json.dumps(dict(branch.versions_replaced)),
                )
        except (ServiceUnavailable, SessionExpired) as exc:
            raise BackendUnavailable(f"Neo4j unavailable: {exc}") from exc
        logger.debug("Branch saved", path=branch.path, head_time=branch.head_time)

    def children(self, path: str) -> List[Branch]:
        query = """
        MATCH (b:Branch) WHERE b.path STARTS WITH $prefix
        RETURN b ORDER BY b.path
        """
        try:
            with self._session() as session:
                rows = list(session.run(query, prefix=path + "/"))
        except (ServiceUnavailable, SessionExpired) as exc:
            raise BackendUnavailable(f"Neo4j unavailable: {exc}") from exc
        branches = [self._to_branch(row["b"]) for row in rows]
        return [b for b in branches if parent_path_of(b.path) == path]
