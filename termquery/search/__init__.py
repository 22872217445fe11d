# Concept search package
from .coordinator import SearchCoordinator
from .lexical import DescriptionSearch
from .paging import (
    Page,
    PageRequest,
    decode_cursor,
    empty_page,
    encode_cursor,
    ordered_intersection,
    page_of,
)
from .query import ConceptQuery

__all__ = [
    "SearchCoordinator",
    "DescriptionSearch",
    "ConceptQuery",
    "Page",
    "PageRequest",
    "encode_cursor",
    "decode_cursor",
    "empty_page",
    "page_of",
    "ordered_intersection",
]
