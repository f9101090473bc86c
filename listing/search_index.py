"""
search_index.py
---------------
Inverted index (token -> keys) over selected fields of a set of records.

Tokens are the lowercase, whitespace-separated words of each indexed field.
A query word matches every token it is a prefix of; a multi-word query
returns the records matching all of its words. Results keep the order in
which records were first added.

An empty or blank query means "no filter" and returns every indexed record.
"""
from __future__ import annotations
from itertools import count
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Set

Record = Mapping[str, Any]


def get_nested_value(record: Any, path: str) -> Any:
    current = record
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def tokenize(text: str) -> List[str]:
    return text.lower().split()


class SearchIndex:
    def __init__(self, fields: Sequence[str], records: Iterable[Record] = (), key_field: str = "id") -> None:
        self.fields = tuple(fields)
        self.key_field = key_field
        self._index: Dict[str, Set[Hashable]] = {}
        self._records: Dict[Hashable, Record] = {}
        self._order: Dict[Hashable, int] = {}
        self._seq = count()
        for record in records:
            self.add_item(record)

    def _tokens_of(self, record: Record) -> Set[str]:
        tokens: Set[str] = set()
        for field in self.fields:
            value = get_nested_value(record, field)
            if value is not None and value != "":
                tokens.update(tokenize(str(value)))
        return tokens

    def add_item(self, record: Record) -> None:
        key = record[self.key_field]
        if key in self._records:
            self._unindex(key)
        else:
            self._order[key] = next(self._seq)
        self._records[key] = record
        for token in self._tokens_of(record):
            self._index.setdefault(token, set()).add(key)

    def remove_item(self, key: Hashable) -> None:
        if key not in self._records:
            return
        self._unindex(key)
        del self._records[key]
        del self._order[key]

    def _unindex(self, key: Hashable) -> None:
        for token in self._tokens_of(self._records[key]):
            keys = self._index.get(token)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._index[token]

    def _match_word(self, word: str) -> Set[Hashable]:
        matches = set(self._index.get(word, ()))
        for token, keys in self._index.items():
            if token.startswith(word):
                matches |= keys
        return matches

    def search(self, term: Optional[str]) -> List[Record]:
        words = tokenize(term or "")
        if not words:
            return list(self._records.values())

        result: Optional[Set[Hashable]] = None
        for word in words:
            matches = self._match_word(word)
            result = matches if result is None else result & matches
            if not result:
                return []
        return [self._records[k] for k in sorted(result, key=self._order.__getitem__)]

    def clear(self) -> None:
        self._index.clear()
        self._records.clear()
        self._order.clear()

    def size(self) -> int:
        return len(self._records)

    def token_count(self) -> int:
        return len(self._index)
