from .collection import IndexedCollection
from .indexed_list import IndexedList
from .search_index import SearchIndex
from .selection import SelectionManager
from .sorted_index import SortedIndex
from .views import Page, paginate, sort_records

__all__ = [
    "IndexedCollection",
    "IndexedList",
    "Page",
    "SearchIndex",
    "SelectionManager",
    "SortedIndex",
    "paginate",
    "sort_records",
]
