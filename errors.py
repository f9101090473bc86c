"""
errors.py
---------
Exception types raised by the caching layer.

- NetworkFailure: the fetch function (or the HTTP transport) failed
- CacheMiss: nothing cached and no way to fall back to the network
- InvalidPolicy: a policy or invalidation table is malformed (startup error)
"""
from __future__ import annotations
from typing import Optional


class CacheError(Exception):
    """Base class for caching-layer errors."""


class NetworkFailure(CacheError):
    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class CacheMiss(CacheError):
    def __init__(self, key: str) -> None:
        super().__init__(f"No cached data found for key: {key}")
        self.key = key


class InvalidPolicy(CacheError):
    """Raised while building policy/invalidation tables. Not recoverable."""
