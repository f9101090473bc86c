from .cache_types import CacheCategory, CacheStrategy, HttpMethod

__all__ = ["CacheCategory", "CacheStrategy", "HttpMethod"]
