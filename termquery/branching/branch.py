"""
Branch model.

A branch path is slash-delimited (``MAIN/PROJECT/TASK``); the parent is the
path minus its last segment. All times are epoch milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

PATH_SEPARATOR = "/"


def parent_path_of(path: str) -> Optional[str]:
    if PATH_SEPARATOR not in path:
        return None
    return path.rsplit(PATH_SEPARATOR, 1)[0]


def validate_path(path: str) -> str:
    if not path or any(not segment for segment in path.split(PATH_SEPARATOR)):
        raise ValueError(f"Invalid branch path: {path!r}")
    return path


@dataclass(frozen=True)
class Branch:
    """
    Immutable snapshot of one branch's bookkeeping.

    ``rebases`` records every ``(at, base_time)`` pair the branch has had,
    starting with its creation, so the base in force at any earlier point of
    the branch's own timeline can be recovered. ``versions_replaced`` maps the
    internal id of an ancestor's record version to the time this branch
    replaced or deleted it.
    """

    path: str
    created_time: int
    base_time: int
    head_time: int
    rebases: Tuple[Tuple[int, int], ...] = ()
    versions_replaced: Mapping[str, int] = field(default_factory=dict)

    @property
    def parent_path(self) -> Optional[str]:
        return parent_path_of(self.path)

    @property
    def is_root(self) -> bool:
        return self.parent_path is None

    def base_as_of(self, at: int) -> int:
        """Parent timestamp this branch was based on at its own time ``at``."""
        base = self.rebases[0][1] if self.rebases else self.base_time
        for changed_at, base_time in self.rebases:
            if changed_at > at:
                break
            base = base_time
        return base

    def replaced_as_of(self, at: int) -> frozenset:
        return frozenset(
            internal_id
            for internal_id, replaced_at in self.versions_replaced.items()
            if replaced_at <= at
        )

    def with_head(self, head_time: int, replaced: Optional[Mapping[str, int]] = None) -> "Branch":
        versions = dict(self.versions_replaced)
        if replaced:
            versions.update(replaced)
        return replace(self, head_time=head_time, versions_replaced=versions)

    def rebased(self, at: int, base_time: int, replaced: Mapping[str, int]) -> "Branch":
        versions = dict(self.versions_replaced)
        versions.update(replaced)
        return replace(
            self,
            base_time=base_time,
            head_time=at,
            rebases=self.rebases + ((at, base_time),),
            versions_replaced=versions,
        )
