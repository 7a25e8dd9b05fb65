"""Pure page arithmetic; no cache or network access."""

from __future__ import annotations

import math
from typing import Optional, Sequence, TypeVar

from .types import Page, PaginationOptions

T = TypeVar("T")


def page_count(total_items: int, page_size: int) -> int:
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    return math.ceil(max(total_items, 0) / page_size)


def paginate(items: Sequence[T], page: int, page_size: int) -> Page[T]:
    if page < 1:
        raise ValueError("page must be at least 1")
    total_items = len(items)
    total_pages = page_count(total_items, page_size)
    start = min((page - 1) * page_size, total_items)
    end = min(start + page_size, total_items)
    return Page(
        items=list(items[start:end]),
        page=page,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages,
    )


def page_in_range(page: int, total_pages: int) -> bool:
    """Page 1 stays valid for an empty set."""
    return 1 <= page <= max(1, total_pages)


def change_page(current: PaginationOptions, requested_page: int) -> Optional[PaginationOptions]:
    """Return the pagination moved to ``requested_page``, or ``None`` if out of range."""
    if not page_in_range(requested_page, current.total_pages):
        return None
    return PaginationOptions(
        page=requested_page,
        page_size=current.page_size,
        total_items=current.total_items,
        total_pages=current.total_pages,
    )
