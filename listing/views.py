"""Sorting and paging for list views."""
from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from math import ceil
from typing import Any, List, Sequence, Tuple

from .search_index import get_nested_value


@dataclass(frozen=True)
class Page:
    items: List[Any]
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages - 1

    @property
    def has_prev(self) -> bool:
        return self.page > 0


def _sort_key(value: Any) -> Tuple[int, Any]:
    # None first, then numbers, then dates, then strings (case-insensitive)
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, datetime):
        return (2, value.timestamp())
    if isinstance(value, date):
        return (2, datetime(value.year, value.month, value.day).timestamp())
    return (3, str(value).lower())


def sort_records(records: Sequence[Any], field: str, descending: bool = False) -> List[Any]:
    """Stable sort by a (possibly dotted) field."""
    return sorted(records, key=lambda r: _sort_key(get_nested_value(r, field)), reverse=descending)


def paginate(records: Sequence[Any], page: int = 0, page_size: int = 10) -> Page:
    """Zero-based page of `records`; out-of-range pages are clamped."""
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    total_items = len(records)
    total_pages = ceil(total_items / page_size)
    page = max(0, min(page, total_pages - 1)) if total_pages else 0
    start = page * page_size
    return Page(
        items=list(records[start:start + page_size]),
        page=page,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages,
    )
