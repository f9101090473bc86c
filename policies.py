"""
policies.py
-----------
Per-endpoint cache policy (TTL, strategy, category).

Policies are an explicit ordered list. A request URL picks the policy whose
pattern it contains; the longest matching pattern wins and ties go to the one
declared first. URLs nothing matches get DEFAULT_POLICY.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from app_types import CacheCategory, CacheStrategy
from errors import InvalidPolicy

SECONDS = 1
MINUTES = 60 * SECONDS


@dataclass(frozen=True)
class EndpointPolicy:
    match_pattern: str
    ttl: float
    strategy: CacheStrategy = CacheStrategy.CACHE_FIRST
    category: CacheCategory = CacheCategory.API_RESPONSES


DEFAULT_POLICY = EndpointPolicy("", 5 * MINUTES, CacheStrategy.CACHE_FIRST, CacheCategory.API_RESPONSES)

DEFAULT_ENDPOINT_POLICIES: Tuple[EndpointPolicy, ...] = (
    # Static / semi-static data
    EndpointPolicy("/seasons", 30 * MINUTES, CacheStrategy.CACHE_FIRST),
    EndpointPolicy("/employees", 15 * MINUTES, CacheStrategy.CACHE_FIRST),
    EndpointPolicy("/farm-settings", 60 * MINUTES, CacheStrategy.CACHE_FIRST),
    # Dynamic data
    EndpointPolicy("/ponds", 5 * MINUTES, CacheStrategy.STALE_WHILE_REVALIDATE),
    EndpointPolicy("/expenses", 3 * MINUTES, CacheStrategy.STALE_WHILE_REVALIDATE),
    EndpointPolicy("/inventory", 2 * MINUTES, CacheStrategy.STALE_WHILE_REVALIDATE),
    # Near real-time data
    EndpointPolicy("/water-quality", 30 * SECONDS, CacheStrategy.NETWORK_FIRST),
    EndpointPolicy("/feed-inputs", 60 * SECONDS, CacheStrategy.NETWORK_FIRST),
    EndpointPolicy("/dashboard", 45 * SECONDS, CacheStrategy.STALE_WHILE_REVALIDATE),
)


def _validate(policy: EndpointPolicy) -> None:
    if not isinstance(policy.match_pattern, str) or not policy.match_pattern:
        raise InvalidPolicy(f"policy pattern must be a non-empty string: {policy!r}")
    if not isinstance(policy.ttl, (int, float)) or policy.ttl <= 0:
        raise InvalidPolicy(f"ttl must be a positive number of seconds for {policy.match_pattern!r}")
    if not isinstance(policy.strategy, CacheStrategy):
        raise InvalidPolicy(f"unknown strategy {policy.strategy!r} for {policy.match_pattern!r}")
    if not isinstance(policy.category, CacheCategory):
        raise InvalidPolicy(f"unknown category {policy.category!r} for {policy.match_pattern!r}")


class PolicyResolver:
    def __init__(
        self,
        policies: Iterable[EndpointPolicy] = DEFAULT_ENDPOINT_POLICIES,
        default: EndpointPolicy = DEFAULT_POLICY,
    ) -> None:
        self.policies: Tuple[EndpointPolicy, ...] = tuple(policies)
        seen = set()
        for policy in self.policies:
            _validate(policy)
            if policy.match_pattern in seen:
                raise InvalidPolicy(f"duplicate policy pattern {policy.match_pattern!r}")
            seen.add(policy.match_pattern)
        if default.ttl <= 0:
            raise InvalidPolicy("default policy ttl must be > 0")
        self.default = default

    def match(self, url: str) -> Optional[EndpointPolicy]:
        best: Optional[EndpointPolicy] = None
        for policy in self.policies:
            if policy.match_pattern in url:
                if best is None or len(policy.match_pattern) > len(best.match_pattern):
                    best = policy
        return best

    def resolve(self, url: str) -> EndpointPolicy:
        return self.match(url) or self.default
