"""Page requests, result pages and opaque offset cursors."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Collection, Generic, List, Optional, Sequence, TypeVar

from termquery.shared.errors import InvalidPage

T = TypeVar("T")


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(str(offset).encode("utf-8")).decode("utf-8")


def decode_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        return int(base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return 0


@dataclass(frozen=True)
class PageRequest:
    number: int = 0
    size: int = 50

    def __post_init__(self) -> None:
        if self.number < 0:
            raise InvalidPage(f"Page number must not be negative, got {self.number}")
        if self.size <= 0:
            raise InvalidPage(f"Page size must be positive, got {self.size}")

    @property
    def offset(self) -> int:
        return self.number * self.size

    @classmethod
    def from_cursor(cls, cursor: Optional[str], size: int) -> "PageRequest":
        if size <= 0:
            raise InvalidPage(f"Page size must be positive, got {size}")
        return cls(number=decode_cursor(cursor) // size, size=size)


@dataclass(frozen=True)
class Page(Generic[T]):
    """
    One window of results.

    ``ordered`` is True when items follow lexical relevance order and False
    when they come from a set (then ordered by id only for stable paging).
    """

    items: List[T] = field(default_factory=list)
    number: int = 0
    size: int = 50
    total: int = 0
    ordered: bool = False

    @property
    def next_cursor(self) -> Optional[str]:
        next_offset = (self.number + 1) * self.size
        if next_offset >= self.total:
            return None
        return encode_cursor(next_offset)

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.size)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def map(self, items: List[Any]) -> "Page[Any]":
        return Page(items=items, number=self.number, size=self.size, total=self.total, ordered=self.ordered)


def empty_page(request: PageRequest, ordered: bool = False) -> Page:
    return Page(items=[], number=request.number, size=request.size, total=0, ordered=ordered)


def page_of(items: Sequence[T], request: PageRequest, ordered: bool = False) -> Page[T]:
    """Slice an in-memory list into the requested page."""
    window = list(items[request.offset : request.offset + request.size])
    return Page(
        items=window,
        number=request.number,
        size=request.size,
        total=len(items),
        ordered=ordered,
    )


def ordered_intersection(
    ordered_ids: Sequence[str], allowed: Collection[str], request: PageRequest
) -> Page[str]:
    """Keep ``ordered_ids`` that are in ``allowed``, in their original order, then page."""
    allowed = allowed if isinstance(allowed, (set, frozenset)) else set(allowed)
    return page_of([i for i in ordered_ids if i in allowed], request, ordered=True)
