"""
Three-way constraint outcome.

``Unconstrained`` imposes no restriction, ``EmptySet`` legitimately matches
nothing and ``IdSet`` matches some ids. Keeping these apart removes any need
for placeholder ids to force an empty result.
"""

from dataclasses import dataclass
from functools import cached_property
from typing import Tuple, Union


class Unconstrained:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCONSTRAINED"


class EmptySet:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY_SET"

    def __len__(self) -> int:
        return 0


UNCONSTRAINED = Unconstrained()
EMPTY_SET = EmptySet()


@dataclass(frozen=True)
class IdSet:
    """Non-empty matched ids; ``ordered`` marks relevance order."""

    ids: Tuple[str, ...]
    ordered: bool = False

    def __post_init__(self) -> None:
        if not self.ids:
            raise ValueError("IdSet must not be empty; use EMPTY_SET")

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self):
        return iter(self.ids)

    def __contains__(self, concept_id: object) -> bool:
        return concept_id in self.members

    @cached_property
    def members(self) -> frozenset:
        return frozenset(self.ids)

    def as_set(self) -> frozenset:
        return self.members


Result = Union[Unconstrained, EmptySet, IdSet]


def id_set(ids, ordered: bool = False) -> Result:
    """IdSet for a non-empty sequence, EMPTY_SET otherwise."""
    ids = tuple(ids)
    return IdSet(ids, ordered) if ids else EMPTY_SET
