"""
indexed_list.py
---------------
A list view's records: collection plus an optional search index, sorted order and
selection, always mutated together so they never disagree.
"""
from __future__ import annotations
from typing import Any, Hashable, Iterable, List, Mapping, Optional, Sequence

from .collection import IndexedCollection, Record
from .search_index import SearchIndex
from .selection import SelectionManager
from .sorted_index import SortedIndex


class IndexedList:
    def __init__(
        self,
        records: Iterable[Record] = (),
        key_field: str = "id",
        search_fields: Optional[Sequence[str]] = None,
        selectable: bool = False,
        sort_field: Optional[str] = None,
    ) -> None:
        self.key_field = key_field
        self.collection = IndexedCollection(key_field=key_field)
        self.search_index = SearchIndex(search_fields, key_field=key_field) if search_fields else None
        self.selection = SelectionManager() if selectable else None
        self.sorted_index = SortedIndex(key_field=key_field, sort_field=sort_field) if sort_field else None
        self.bulk_add(records)

    def add(self, record: Record) -> None:
        self.collection.add(record)
        if self.search_index is not None:
            self.search_index.add_item(record)
        if self.sorted_index is not None:
            self.sorted_index.add(record)

    def remove(self, key: Hashable) -> None:
        self.collection.remove(key)
        if self.search_index is not None:
            self.search_index.remove_item(key)
        if self.sorted_index is not None:
            self.sorted_index.remove(key)
        if self.selection is not None:
            self.selection.deselect(key)

    def update(self, key: Hashable, partial: Mapping[str, Any]) -> None:
        if not self.collection.has(key):
            return
        self.collection.update(key, partial)
        if self.search_index is not None:
            self.search_index.add_item(self.collection.get(key))
        if self.sorted_index is not None:
            self.sorted_index.update(key, partial)

    def bulk_add(self, records: Iterable[Record]) -> None:
        for record in records:
            self.add(record)

    def bulk_remove(self, keys: Iterable[Hashable]) -> None:
        for key in keys:
            self.remove(key)

    def replace(self, records: Iterable[Record]) -> None:
        """Reload from a fresh fetch. Selected keys that disappeared are dropped."""
        self.collection.clear()
        if self.search_index is not None:
            self.search_index.clear()
        if self.sorted_index is not None:
            self.sorted_index.clear()
        self.bulk_add(records)
        if self.selection is not None:
            self.selection.prune(self.collection.keys())

    def clear(self) -> None:
        self.collection.clear()
        if self.search_index is not None:
            self.search_index.clear()
        if self.sorted_index is not None:
            self.sorted_index.clear()
        if self.selection is not None:
            self.selection.deselect_all()

    def get(self, key: Hashable) -> Optional[Record]:
        return self.collection.get(key)

    def has(self, key: Hashable) -> bool:
        return self.collection.has(key)

    def get_all(self) -> List[Record]:
        return self.collection.get_all()

    def search(self, term: Optional[str]) -> List[Record]:
        if self.search_index is None or not (term or "").strip():
            return self.collection.get_all()
        return [r for r in self.search_index.search(term) if self.collection.has(r[self.key_field])]

    def get_sorted(self) -> List[Record]:
        """Records in sort-field order; insertion order when no sort field is set."""
        if self.sorted_index is None:
            return self.collection.get_all()
        return self.sorted_index.get_in_order()

    def get_range(self, start: int, end: Optional[int] = None) -> List[Record]:
        if self.sorted_index is None:
            return self.collection.get_all()[start:end]
        return self.sorted_index.get_range(start, end)

    def resort(self, sort_field: str) -> None:
        if self.sorted_index is None:
            self.sorted_index = SortedIndex(self.collection.get_all(), self.key_field, sort_field)
        else:
            self.sorted_index.resort(sort_field)

    # -----------------------------------------------------------
    # Selection
    # -----------------------------------------------------------
    def _require_selection(self) -> SelectionManager:
        if self.selection is None:
            raise RuntimeError("selection is not enabled for this list")
        return self.selection

    def select(self, key: Hashable) -> None:
        if self.collection.has(key):
            self._require_selection().select(key)

    def deselect(self, key: Hashable) -> None:
        self._require_selection().deselect(key)

    def toggle(self, key: Hashable) -> None:
        selection = self._require_selection()
        if selection.is_selected(key) or self.collection.has(key):
            selection.toggle(key)

    def select_all(self) -> None:
        self._require_selection().select_all(self.collection.keys())

    def deselect_all(self) -> None:
        self._require_selection().deselect_all()

    def is_selected(self, key: Hashable) -> bool:
        return self.selection is not None and self.selection.is_selected(key)

    def get_selected_items(self) -> List[Record]:
        selection = self._require_selection()
        return [self.collection.get(k) for k in selection.get_selected() if self.collection.has(k)]

    def size(self) -> int:
        return self.collection.size()

    def __len__(self) -> int:
        return self.collection.size()
