"""Set of selected keys, kept in the order they were selected."""
from __future__ import annotations
from typing import Dict, Hashable, Iterable, List


class SelectionManager:
    def __init__(self, selected: Iterable[Hashable] = ()) -> None:
        self._selected: Dict[Hashable, None] = dict.fromkeys(selected)

    def select(self, key: Hashable) -> "SelectionManager":
        self._selected[key] = None
        return self

    def deselect(self, key: Hashable) -> "SelectionManager":
        self._selected.pop(key, None)
        return self

    def toggle(self, key: Hashable) -> "SelectionManager":
        if key in self._selected:
            del self._selected[key]
        else:
            self._selected[key] = None
        return self

    def select_all(self, keys: Iterable[Hashable]) -> "SelectionManager":
        """Replace the selection with `keys`."""
        self._selected = dict.fromkeys(keys)
        return self

    def deselect_all(self) -> "SelectionManager":
        self._selected.clear()
        return self

    def bulk_select(self, keys: Iterable[Hashable]) -> "SelectionManager":
        for key in keys:
            self.select(key)
        return self

    def bulk_deselect(self, keys: Iterable[Hashable]) -> "SelectionManager":
        for key in keys:
            self.deselect(key)
        return self

    def bulk_toggle(self, keys: Iterable[Hashable]) -> "SelectionManager":
        for key in keys:
            self.toggle(key)
        return self

    def prune(self, valid_keys: Iterable[Hashable]) -> List[Hashable]:
        """Drop selected keys not in `valid_keys`; returns what was dropped."""
        valid = set(valid_keys)
        orphans = [k for k in self._selected if k not in valid]
        for key in orphans:
            del self._selected[key]
        return orphans

    def is_selected(self, key: Hashable) -> bool:
        return key in self._selected

    def get_selected(self) -> List[Hashable]:
        return list(self._selected)

    def size(self) -> int:
        return len(self._selected)

    def is_empty(self) -> bool:
        return not self._selected

    def clone(self) -> "SelectionManager":
        return SelectionManager(self._selected)

    def __len__(self) -> int:
        return len(self._selected)

    def __contains__(self, key: object) -> bool:
        return key in self._selected
