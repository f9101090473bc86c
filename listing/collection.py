"""
collection.py
-------------
Keyed, insertion-ordered record store.

Records are mappings; each one's key is read from `key_field`. Lookups,
inserts, updates and removals are O(1) since a dict keeps both the index and
the order.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, Hashable, Iterable, Iterator, List, Mapping, Optional

Record = Mapping[str, Any]


class IndexedCollection:
    def __init__(self, records: Iterable[Record] = (), key_field: str = "id") -> None:
        self.key_field = key_field
        self._items: Dict[Hashable, Record] = {}
        self.bulk_add(records)

    def key_of(self, record: Record) -> Hashable:
        try:
            return record[self.key_field]
        except KeyError:
            raise KeyError(f"record has no {self.key_field!r} field: {record!r}") from None

    def add(self, record: Record) -> "IndexedCollection":
        # Existing keys keep their position; the record is replaced.
        self._items[self.key_of(record)] = record
        return self

    def remove(self, key: Hashable) -> "IndexedCollection":
        self._items.pop(key, None)
        return self

    def update(self, key: Hashable, partial: Mapping[str, Any]) -> "IndexedCollection":
        """Merge `partial` into the record at `key`. Missing keys are ignored."""
        current = self._items.get(key)
        if current is not None:
            merged = {**current, **partial}
            merged[self.key_field] = key
            self._items[key] = merged
        return self

    def get(self, key: Hashable) -> Optional[Record]:
        return self._items.get(key)

    def has(self, key: Hashable) -> bool:
        return key in self._items

    def get_all(self) -> List[Record]:
        return list(self._items.values())

    def keys(self) -> List[Hashable]:
        return list(self._items.keys())

    def find(self, predicate: Callable[[Record], bool]) -> Optional[Record]:
        return next((r for r in self._items.values() if predicate(r)), None)

    def filter(self, predicate: Callable[[Record], bool]) -> List[Record]:
        return [r for r in self._items.values() if predicate(r)]

    def bulk_add(self, records: Iterable[Record]) -> "IndexedCollection":
        for record in records:
            self.add(record)
        return self

    def bulk_remove(self, keys: Iterable[Hashable]) -> "IndexedCollection":
        for key in keys:
            self.remove(key)
        return self

    def bulk_update(self, updates: Mapping[Hashable, Mapping[str, Any]]) -> "IndexedCollection":
        for key, partial in updates.items():
            self.update(key, partial)
        return self

    def clear(self) -> "IndexedCollection":
        self._items.clear()
        return self

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self._items.values()))
