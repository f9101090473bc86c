"""
sorted_index.py
---------------
Record keys kept in order of one (possibly dotted) field, maintained incrementally.

Inserts use binary search, so a list view can add, remove or edit one record
without re-sorting everything. Equal values keep insertion order. Without a
sort field the order is plain insertion order.
"""
from __future__ import annotations
from bisect import bisect_right
from typing import Any, Hashable, Iterable, List, Mapping, Optional, Tuple

from .collection import IndexedCollection, Record
from .search_index import get_nested_value
from .views import _sort_key


class SortedIndex:
    def __init__(
        self,
        records: Iterable[Record] = (),
        key_field: str = "id",
        sort_field: Optional[str] = None,
    ) -> None:
        self.key_field = key_field
        self.sort_field = sort_field
        self.items = IndexedCollection(key_field=key_field)
        self._keys: List[Hashable] = []
        self._values: List[Tuple[int, Any]] = []
        for record in records:
            self.add(record)

    def _value_of(self, record: Record) -> Tuple[int, Any]:
        if self.sort_field is None:
            return (0, 0)
        return _sort_key(get_nested_value(record, self.sort_field))

    def _insert(self, key: Hashable) -> None:
        value = self._value_of(self.items.get(key))
        i = bisect_right(self._values, value)
        self._keys.insert(i, key)
        self._values.insert(i, value)

    def _detach(self, key: Hashable) -> None:
        i = self._keys.index(key)
        del self._keys[i]
        del self._values[i]

    def add(self, record: Record) -> "SortedIndex":
        key = self.items.key_of(record)
        if self.items.has(key):
            self._detach(key)
        self.items.add(record)
        self._insert(key)
        return self

    def remove(self, key: Hashable) -> "SortedIndex":
        if self.items.has(key):
            self._detach(key)
            self.items.remove(key)
        return self

    def update(self, key: Hashable, partial: Mapping[str, Any]) -> "SortedIndex":
        if not self.items.has(key):
            return self
        self.items.update(key, partial)
        if self.sort_field is not None:
            self._detach(key)
            self._insert(key)
        return self

    def get_in_order(self) -> List[Record]:
        return [self.items.get(k) for k in self._keys]

    def get_range(self, start: int, end: Optional[int] = None) -> List[Record]:
        """Records at sorted positions [start, end), slice semantics."""
        return [self.items.get(k) for k in self._keys[start:end]]

    def keys(self) -> List[Hashable]:
        return list(self._keys)

    def resort(self, sort_field: Optional[str]) -> "SortedIndex":
        self.sort_field = sort_field
        # sorted() is stable, so ties keep their current relative order
        pairs = sorted(
            ((self._value_of(self.items.get(k)), k) for k in self._keys),
            key=lambda pair: pair[0],
        )
        self._values = [v for v, _ in pairs]
        self._keys = [k for _, k in pairs]
        return self

    def clear(self) -> "SortedIndex":
        self.items.clear()
        self._keys = []
        self._values = []
        return self

    def size(self) -> int:
        return len(self._keys)

    def __len__(self) -> int:
        return len(self._keys)
