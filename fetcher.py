# fetcher.py
import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

import requests
from dotenv import load_dotenv

from app_types import CacheCategory, HttpMethod
from cache_store import CacheStore
from dedupe import RequestDeduplicator
from errors import NetworkFailure
from invalidation import InvalidationEngine
from policies import PolicyResolver
from strategies import CacheStrategyEngine

# -----------------------------------------------------------
# Environment & logging
# -----------------------------------------------------------
load_dotenv()
logger = logging.getLogger("uvicorn.error")

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:5001/api")
API_TOKEN = os.getenv("API_TOKEN")
API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "20"))
API_MAX_ATTEMPTS = int(os.getenv("API_MAX_ATTEMPTS", "3"))
API_RETRY_BASE_DELAY = float(os.getenv("API_RETRY_BASE_DELAY", "1.0"))

# Cache config
CACHE_DEFAULT_TTL_SECONDS = float(os.getenv("CACHE_DEFAULT_TTL_SECONDS", "300"))
CACHE_MAX_SIZE = int(os.getenv("CACHE_MAX_SIZE", "1000"))              # 0 disables the LRU cap
_stale_retention = os.getenv("CACHE_STALE_RETENTION_SECONDS")
CACHE_STALE_RETENTION_SECONDS = float(_stale_retention) if _stale_retention else None

PID = os.getpid()

FetchFn = Callable[[], Awaitable[Any]]


# -----------------------------------------------------------
# Helpers
# -----------------------------------------------------------
def _mask_token(token: Optional[str]) -> str:
    if not token:
        return "None"
    return f"{token[:4]}…{token[-4:]}" if len(token) > 8 else "****"


def make_cache_key(method: str, url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    # Sorted params so the same logical request always maps to the same key
    base = f"{str(method).lower()}_{url}"
    if not params:
        return base
    query = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return f"{base}?{query}"


def _is_retryable(error: Exception) -> bool:
    status = getattr(error, "status_code", None)
    if isinstance(error, NetworkFailure) and status is not None:
        return status >= 500 or status in (408, 429)
    return True


def with_retries(
    fetch_fn: FetchFn,
    max_attempts: int = API_MAX_ATTEMPTS,
    base_delay: float = API_RETRY_BASE_DELAY,
    max_delay: float = 30.0,
) -> FetchFn:
    """
    Wrap a fetch function with exponential backoff.

    Attempt n (1-based) that fails waits base_delay * 2**(n-1) seconds (capped at
    max_delay) before the next try. After max_attempts failures the last error is raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    async def attempt() -> Any:
        for n in range(1, max_attempts + 1):
            try:
                return await fetch_fn()
            except Exception as e:
                if n == max_attempts or not _is_retryable(e):
                    raise
                delay = min(base_delay * (2 ** (n - 1)), max_delay)
                logger.warning("Fetch failed, retrying in %.2fs (%s/%s): %s", delay, n, max_attempts, e)
                await asyncio.sleep(delay)

    return attempt


# -----------------------------------------------------------
# Transport
# -----------------------------------------------------------
class RequestsTransport:
    """
    Blocking `requests` calls pushed onto a worker thread so the event loop never blocks.
    Raises NetworkFailure on connection errors and non-2xx responses.
    """
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        token: Optional[str] = API_TOKEN,
        timeout: float = API_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, url: str) -> str:
        return f"{self.base_url}/{url.lstrip('/')}"

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, url: str, params: Optional[Mapping[str, Any]], json: Any) -> Any:
        full_url = self._url(url)
        logger.info("UPSTREAM REQUEST → %s %s token=%s", method, full_url, _mask_token(self.token))
        try:
            resp = self.session.request(
                method,
                full_url,
                params=dict(params) if params else None,
                json=json,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Network error on %s %s: %s", method, full_url, str(e))
            raise NetworkFailure(f"Network error: {e}", url=url) from e

        logger.info("UPSTREAM RESPONSE → %s %s status=%s bytes≈%s", method, full_url, resp.status_code, len(resp.content))
        logger.debug("resp.headers = %s", dict(resp.headers))

        if not 200 <= resp.status_code < 300:
            message = f"HTTP error! status: {resp.status_code}"
            try:
                body = resp.json()
                if isinstance(body, dict) and body.get("message"):
                    message = body["message"]
            except ValueError:
                if resp.text.strip():
                    message = resp.text
            logger.warning("Failed upstream response for %s %s: HTTP %s", method, full_url, resp.status_code)
            raise NetworkFailure(message, status_code=resp.status_code, url=url)

        if resp.status_code == 204 or not resp.content:
            return None
        if "application/json" in resp.headers.get("Content-Type", ""):
            return resp.json()
        return resp.text

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        return await asyncio.to_thread(self._send, str(method).upper(), url, params, json)


# -----------------------------------------------------------
# Cached client
# -----------------------------------------------------------
@dataclass(frozen=True)
class CachedResponse:
    data: Any
    cached: bool
    stale: bool = False


class CachedApiClient:
    """
    Reads go through the endpoint's cache strategy; writes go straight to the
    transport and then invalidate related cache entries.
    """
    def __init__(
        self,
        transport: Any,
        store: CacheStore,
        resolver: Optional[PolicyResolver] = None,
        invalidator: Optional[InvalidationEngine] = None,
        engine: Optional[CacheStrategyEngine] = None,
        max_attempts: int = API_MAX_ATTEMPTS,
        retry_base_delay: float = API_RETRY_BASE_DELAY,
    ) -> None:
        self.transport = transport
        self.store = store
        self.resolver = resolver or PolicyResolver()
        self.invalidator = invalidator or InvalidationEngine(store)
        self.engine = engine or CacheStrategyEngine(store, RequestDeduplicator())
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.metrics = {"requests": 0, "cache_hits": 0, "cache_misses": 0, "errors": 0}

    async def get(self, url: str, params: Optional[Mapping[str, Any]] = None, force_refresh: bool = False) -> CachedResponse:
        self.metrics["requests"] += 1
        key = make_cache_key(HttpMethod.GET.value, url, params)
        policy = self.resolver.resolve(url)
        logger.info("FETCH start → pid=%s key=%s strategy=%s", PID, key, policy.strategy.value)

        if force_refresh:
            self.store.delete(key)

        fetch_fn = with_retries(
            lambda: self.transport.request(HttpMethod.GET.value, url, params=params),
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
        )
        try:
            result = await self.engine.execute_with_meta(key, fetch_fn, policy)
        except Exception:
            self.metrics["errors"] += 1
            raise

        if result.from_cache:
            self.metrics["cache_hits"] += 1
        else:
            self.metrics["cache_misses"] += 1
        return CachedResponse(data=result.value, cached=result.from_cache, stale=result.stale)

    async def _mutate(self, method: HttpMethod, url: str, data: Any = None) -> Any:
        self.metrics["requests"] += 1
        try:
            response = await self.transport.request(method.value, url, json=data)
        except Exception:
            self.metrics["errors"] += 1
            raise
        self.invalidate(url, method.value)
        return response

    async def post(self, url: str, data: Any = None) -> Any:
        return await self._mutate(HttpMethod.POST, url, data)

    async def put(self, url: str, data: Any = None) -> Any:
        return await self._mutate(HttpMethod.PUT, url, data)

    async def patch(self, url: str, data: Any = None) -> Any:
        return await self._mutate(HttpMethod.PATCH, url, data)

    async def delete(self, url: str) -> Any:
        return await self._mutate(HttpMethod.DELETE, url)

    def invalidate(self, url: str, method: Optional[str] = None) -> int:
        # The write already happened; a failed purge must not turn it into an error.
        try:
            purged = self.invalidator.invalidate(url, method)
            patterns = self.invalidator.patterns_for(url)
            if patterns:
                self.engine.supersede(lambda key: any(p in key for p in patterns))
            return purged
        except Exception:
            logger.exception("Cache invalidation failed after %s %s", method, url)
            return 0

    async def preload(self, urls: Iterable[str]) -> dict:
        """Warm the cache for `urls`. Returns {url: True|False} per outcome."""
        urls = list(urls)
        results = await asyncio.gather(*(self.get(url) for url in urls), return_exceptions=True)
        outcome = {}
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                logger.warning("Failed to preload %s: %s", url, result)
                outcome[url] = False
            else:
                outcome[url] = True
        return outcome

    def clear_cache(self, category: Optional[CacheCategory] = None) -> None:
        self.store.clear(category)
        if category is None:
            logger.info("Cache cleared")
        else:
            logger.info("Cache cleared for category=%s", CacheCategory(category).value)

    def get_stats(self) -> dict:
        """Client metrics, store stats and the number of upstream reads actually made."""
        requests_made = self.metrics["requests"]
        return {
            **self.metrics,
            "hit_rate": round(self.metrics["cache_hits"] / requests_made, 4) if requests_made else 0.0,
            "upstream_calls": self.engine.upstream_calls,
            "in_flight": self.engine.deduplicator.pending_count(),
            "cache": self.store.get_stats(),
            "pid": PID,
        }


def create_client(transport: Optional[Any] = None, store: Optional[CacheStore] = None) -> CachedApiClient:
    """Build a client from environment config."""
    store = store or CacheStore(
        default_ttl=CACHE_DEFAULT_TTL_SECONDS,
        maxsize=CACHE_MAX_SIZE,
        stale_retention=CACHE_STALE_RETENTION_SECONDS,
    )
    client = CachedApiClient(transport or RequestsTransport(), store)
    logger.info(
        "CACHE INIT → pid=%s base_url=%s token=%s ttl=%ss max=%s stale_retention=%s",
        PID,
        API_BASE_URL,
        "yes" if API_TOKEN else "no",
        CACHE_DEFAULT_TTL_SECONDS,
        CACHE_MAX_SIZE,
        CACHE_STALE_RETENTION_SECONDS,
    )
    return client
