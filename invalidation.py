"""
invalidation.py
---------------
Purges related cache entries after a write.

A mutated URL is mapped to an entity type through its first path segment
("/ponds/12" -> "pond"); every cache key containing one of that entity's
patterns is deleted. Unknown entity types purge nothing.
"""
from __future__ import annotations
import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from cache_store import CacheStore
from errors import InvalidPolicy

logger = logging.getLogger("uvicorn.error")

# first path segment -> canonical entity type
ENTITY_NAMES: Dict[str, str] = {
    "ponds": "pond",
    "expenses": "expense",
    "feed-inputs": "feed-input",
    "water-quality": "water-quality",
    "water-quality-inputs": "water-quality",
    "inventory": "inventory",
    "inventory-items": "inventory",
    "inventory-adjustments": "inventory",
    "employees": "employee",
    "seasons": "season",
}

# The "_/<collection>" fragments match keys built by fetcher.make_cache_key.
INVALIDATION_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "pond": ("ponds_list", "dashboard_", "pond_detail_", "pond_summary_", "farm_overview",
             "_/ponds", "_/dashboard"),
    "expense": ("expenses_", "dashboard_", "expense_summary_", "farm_overview",
                "_/expenses", "_/dashboard"),
    "feed-input": ("feed_inputs_", "dashboard_", "pond_detail_", "feeding_summary_",
                   "_/feed-inputs", "_/ponds", "_/dashboard"),
    "water-quality": ("water_quality_", "dashboard_", "pond_detail_", "water_summary_",
                      "_/water-quality", "_/ponds", "_/dashboard"),
    "inventory": ("inventory_", "dashboard_", "inventory_summary_", "_/inventory", "_/dashboard"),
    "employee": ("employees_", "hr_dashboard_", "salary_summary_", "_/employees"),
    "season": ("seasons_", "farm_overview", "dashboard_", "_/seasons", "_/ponds/season",
               "_/nursery-batches", "_/dashboard"),
}


def first_segment(url: str) -> Optional[str]:
    path = url.split("?", 1)[0].split("#", 1)[0]
    segments = [s for s in path.split("/") if s]
    return segments[0] if segments else None


class InvalidationEngine:
    def __init__(
        self,
        store: CacheStore,
        patterns: Mapping[str, Iterable[str]] = INVALIDATION_PATTERNS,
        entity_names: Mapping[str, str] = ENTITY_NAMES,
    ) -> None:
        self.store = store
        self.patterns: Dict[str, Tuple[str, ...]] = {}
        for entity, entity_patterns in patterns.items():
            if isinstance(entity_patterns, str):
                raise InvalidPolicy(f"patterns for {entity!r} must be a sequence, not a string")
            entity_patterns = tuple(entity_patterns)
            if not entity_patterns or not all(isinstance(p, str) and p for p in entity_patterns):
                raise InvalidPolicy(f"patterns for {entity!r} must be non-empty strings")
            self.patterns[entity] = tuple(dict.fromkeys(entity_patterns))
        for segment, entity in entity_names.items():
            if entity not in self.patterns:
                raise InvalidPolicy(f"segment {segment!r} maps to {entity!r}, which has no patterns")
        self.entity_names = dict(entity_names)

    def extract_entity_type(self, url: str) -> Optional[str]:
        segment = first_segment(url)
        if segment is None:
            return None
        return self.entity_names.get(segment)

    def patterns_for(self, url: str) -> Tuple[str, ...]:
        entity = self.extract_entity_type(url)
        return self.patterns[entity] if entity is not None else ()

    def invalidate(self, url: str, method: Optional[str] = None) -> int:
        entity = self.extract_entity_type(url)
        if entity is None:
            logger.info("INVALIDATE SKIP → %s %s (no entity mapping)", method or "", url)
            return 0

        purged = 0
        for pattern in self.patterns[entity]:
            purged += self.store.invalidate_pattern(pattern)
        logger.info("INVALIDATE → entity=%s after %s %s purged=%s", entity, method or "", url, purged)
        return purged
