from enum import Enum


class CacheStrategy(str, Enum):
    CACHE_FIRST = "cache-first"
    NETWORK_FIRST = "network-first"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"
    CACHE_ONLY = "cache-only"
    NETWORK_ONLY = "network-only"


class CacheCategory(str, Enum):
    API_RESPONSES = "api-responses"
    USER_PREFERENCES = "user-preferences"
    COMPUTED_DATA = "computed-data"
    STATIC_ASSETS = "static-assets"
    FORM_DATA = "form-data"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
