"""
Tests for endpoint policy resolution and mutation-driven invalidation.
"""

import pytest

from app_types import CacheStrategy
from errors import InvalidPolicy
from invalidation import INVALIDATION_PATTERNS, InvalidationEngine
from policies import DEFAULT_POLICY, EndpointPolicy, PolicyResolver


class TestPolicyResolver:
    """PolicyResolver.resolve()."""

    @pytest.fixture
    def resolver(self):
        return PolicyResolver()

    def test_ponds_use_stale_while_revalidate(self, resolver):
        p = resolver.resolve("/ponds")
        assert p.strategy == CacheStrategy.STALE_WHILE_REVALIDATE
        assert p.ttl == 300

    def test_substring_match_inside_longer_path(self, resolver):
        assert resolver.resolve("/water-quality-inputs/pond/3").match_pattern == "/water-quality"
        assert resolver.resolve("/ponds/season/2").match_pattern == "/ponds"

    def test_unknown_url_gets_default(self, resolver):
        p = resolver.resolve("/reports/monthly")
        assert p is DEFAULT_POLICY
        assert p.strategy == CacheStrategy.CACHE_FIRST
        assert p.ttl == 300

    def test_longest_pattern_wins_regardless_of_order(self):
        resolver = PolicyResolver([
            EndpointPolicy("/ponds", 60, CacheStrategy.CACHE_FIRST),
            EndpointPolicy("/ponds/summary", 10, CacheStrategy.NETWORK_FIRST),
        ])
        assert resolver.resolve("/ponds/summary").strategy == CacheStrategy.NETWORK_FIRST
        assert resolver.resolve("/ponds/4").strategy == CacheStrategy.CACHE_FIRST

    def test_equal_length_tie_goes_to_first_declared(self):
        resolver = PolicyResolver([
            EndpointPolicy("/aa", 1),
            EndpointPolicy("/bb", 2),
        ])
        assert resolver.resolve("/aa/bb").ttl == 1

    def test_resolve_is_pure(self, resolver):
        before = resolver.policies
        resolver.resolve("/ponds")
        assert resolver.policies == before

    def test_custom_default(self):
        default = EndpointPolicy("", 1, CacheStrategy.NETWORK_ONLY)
        assert PolicyResolver([], default=default).resolve("/x") is default

    @pytest.mark.parametrize("bad", [
        EndpointPolicy("", 10),
        EndpointPolicy("/x", 0),
        EndpointPolicy("/x", -1),
        EndpointPolicy("/x", 10, "cache-first"),
        EndpointPolicy("/x", 10, CacheStrategy.CACHE_FIRST, "api-responses"),
    ])
    def test_malformed_policy_rejected(self, bad):
        with pytest.raises(InvalidPolicy):
            PolicyResolver([bad])

    def test_duplicate_pattern_rejected(self):
        with pytest.raises(InvalidPolicy, match="duplicate"):
            PolicyResolver([EndpointPolicy("/x", 1), EndpointPolicy("/x", 2)])


class TestInvalidationEngine:
    """Entity extraction and pattern purges."""

    @pytest.fixture
    def invalidator(self, store):
        return InvalidationEngine(store)

    @pytest.mark.parametrize("url,entity", [
        ("/ponds/123", "pond"),
        ("ponds", "pond"),
        ("/expenses?month=3", "expense"),
        ("/water-quality-inputs/9", "water-quality"),
        ("/feed-inputs", "feed-input"),
        ("/employees/7/salary", "employee"),
        ("/seasons/1", "season"),
        ("/reports/1", None),
        ("/", None),
        ("", None),
    ])
    def test_extract_entity_type(self, invalidator, url, entity):
        assert invalidator.extract_entity_type(url) == entity

    def test_pond_update_purges_related_entries_only(self, invalidator, store):
        for key in ["ponds_list", "dashboard_overview", "pond_detail_123", "water_quality_42"]:
            store.set(key, key)

        purged = invalidator.invalidate("/ponds/123", "PUT")

        assert purged == 3
        assert store.keys() == ["water_quality_42"]

    def test_purges_request_keys_for_the_collection(self, invalidator, store):
        store.set("get_/ponds", [])
        store.set("get_/ponds/3", {})
        store.set("get_/expenses", [])

        invalidator.invalidate("/ponds", "POST")

        assert store.keys() == ["get_/expenses"]

    def test_unmapped_entity_is_noop(self, invalidator, store):
        store.set("ponds_list", 1)
        assert invalidator.invalidate("/reports/5", "DELETE") == 0
        assert store.has("ponds_list")

    def test_every_mapped_entity_has_patterns(self, invalidator):
        for entity in set(invalidator.entity_names.values()):
            assert invalidator.patterns[entity]

    def test_default_pond_patterns(self):
        assert {"ponds_list", "dashboard_", "pond_detail_"} <= set(INVALIDATION_PATTERNS["pond"])

    def test_entity_without_patterns_rejected(self, store):
        with pytest.raises(InvalidPolicy):
            InvalidationEngine(store, patterns={"pond": ["ponds_"]}, entity_names={"ponds": "pond", "x": "ghost"})

    @pytest.mark.parametrize("patterns", [
        {"pond": []},
        {"pond": [""]},
        {"pond": "ponds_"},
    ])
    def test_malformed_patterns_rejected(self, store, patterns):
        with pytest.raises(InvalidPolicy):
            InvalidationEngine(store, patterns=patterns, entity_names={})
