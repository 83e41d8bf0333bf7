"""
Shared Brave Search API Client.

Provides a reusable HTTP client with:
- Exponential backoff retry logic
- Rate limit (HTTP 429) handling
- TTL caching for repeated lookups

Used by website discovery and logo search during company and investor
enrichment.
"""

import asyncio
import hashlib
import logging
import random
from time import time
from typing import Optional, Dict, Any, List, Tuple

import httpx

from ..config.settings import settings

logger = logging.getLogger(__name__)

BRAVE_WEB_API = "https://api.search.brave.com/res/v1/web/search"
BRAVE_IMAGE_API = "https://api.search.brave.com/res/v1/images/search"


class BraveAPIError(Exception):
    """Raised when Brave API returns an error."""
    pass


class TTLCache:
    """TTL cache for query results, guarded by an asyncio.Lock."""

    CLEANUP_INTERVAL = 100

    def __init__(self, ttl_seconds: int = 3600):
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._ttl = ttl_seconds
        self._operations_since_cleanup = 0
        self._lock = asyncio.Lock()

    def _make_key(self, query: str, count: int, kind: str = "web") -> str:
        return hashlib.md5(f"{kind}:{count}:{query}".encode()).hexdigest()

    async def get(self, query: str, count: int, kind: str = "web") -> Optional[Any]:
        key = self._make_key(query, count, kind)
        async with self._lock:
            if key in self._cache:
                timestamp, value = self._cache[key]
                if time() - timestamp < self._ttl:
                    return value
                del self._cache[key]
            return None

    async def set(self, query: str, count: int, value: Any, kind: str = "web"):
        key = self._make_key(query, count, kind)
        async with self._lock:
            self._cache[key] = (time(), value)
            self._operations_since_cleanup += 1
            if self._operations_since_cleanup >= self.CLEANUP_INTERVAL:
                self._cleanup_locked()
                self._operations_since_cleanup = 0

    def clear(self):
        self._cache.clear()

    def _cleanup_locked(self) -> int:
        now = time()
        expired_keys = [k for k, (ts, _) in self._cache.items() if now - ts >= self._ttl]
        for k in expired_keys:
            del self._cache[k]
        if expired_keys:
            logger.debug(f"Cache cleanup: removed {len(expired_keys)} expired entries, size={len(self._cache)}")
        return len(expired_keys)

    def size(self) -> int:
        return len(self._cache)


# Website lookups rarely change; one day is plenty
_query_cache = TTLCache(ttl_seconds=86400)


def clear_query_cache():
    _query_cache.clear()


class BraveClient:
    """Async client for Brave web and image search with retry and caching."""

    def __init__(self):
        self.api_key = settings.brave_search_key
        self.timeout = settings.brave_search_timeout
        self.max_retries = settings.brave_search_max_retries
        self.backoff_base = settings.brave_search_backoff_base
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={
                    "X-Subscription-Token": self.api_key,
                    "Accept": "application/json",
                },
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def request(self, url: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        GET with exponential backoff.

        Returns JSON or None on failure. 429 honours Retry-After; 5xx,
        timeouts and network errors back off; other 4xx are not retried.

        Raises:
            BraveAPIError: The API key was rejected.
        """
        if not self.configured:
            logger.debug("BRAVE_SEARCH_KEY not configured, skipping search")
            return None

        client = await self._get_client()
        last_error = None

        for attempt in range(self.max_retries):
            backoff = (self.backoff_base ** attempt) * random.uniform(0.9, 1.1)
            try:
                response = await client.get(url, params=params)

                if response.status_code == 429:
                    retry_after_header = response.headers.get("Retry-After", "60")
                    try:
                        retry_after = int(retry_after_header)
                    except ValueError:
                        logger.warning(f"Non-numeric Retry-After header: {retry_after_header}")
                        retry_after = 60
                    logger.warning(
                        f"Brave API rate limited. Waiting {retry_after}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = "rate limited"
                    await asyncio.sleep(retry_after)
                    continue

                if response.status_code >= 500:
                    logger.warning(
                        f"Brave API server error {response.status_code}. "
                        f"Retrying in {backoff:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = f"HTTP {response.status_code}"
                    await asyncio.sleep(backoff)
                    continue

                response.raise_for_status()

                try:
                    return response.json()
                except ValueError as e:
                    logger.warning(f"Brave API JSON decode error: {e}")
                    return None

            except httpx.TimeoutException:
                logger.warning(
                    f"Brave API timeout. Retrying in {backoff:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = "timeout"
                await asyncio.sleep(backoff)

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in (401, 403):
                    raise BraveAPIError(f"Brave API rejected the subscription token (HTTP {status})") from e
                logger.error(f"Brave API client error: {status}")
                return None

            except httpx.RequestError as e:
                logger.warning(
                    f"Brave API network error: {e}. Retrying in {backoff:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = str(e)
                await asyncio.sleep(backoff)

        logger.error(f"Brave API request failed after {self.max_retries} attempts: {last_error}")
        return None

    async def search_web(self, query: str, count: int = 10, use_cache: bool = True) -> List[Dict[str, Any]]:
        """Web search; returns the `web.results` list (empty on failure)."""
        if use_cache:
            cached = await _query_cache.get(query, count)
            if cached is not None:
                logger.debug(f"Cache hit for web query: {query[:50]}...")
                return cached

        data = await self.request(BRAVE_WEB_API, {
            "q": query,
            "count": count,
            "text_decorations": False,
            "safesearch": "off",
        })
        if data is None:
            return []

        results = (data.get("web") or {}).get("results") or []
        if use_cache:
            await _query_cache.set(query, count, results)
        return results

    async def search_images(self, query: str, count: int = 8, use_cache: bool = True) -> List[Dict[str, Any]]:
        """Image search; returns the `results` list (empty on failure)."""
        if use_cache:
            cached = await _query_cache.get(query, count, kind="images")
            if cached is not None:
                logger.debug(f"Cache hit for image query: {query[:50]}...")
                return cached

        data = await self.request(BRAVE_IMAGE_API, {
            "q": query,
            "count": count,
            "safesearch": "off",
        })
        if data is None:
            return []

        results = data.get("results") or []
        if use_cache:
            await _query_cache.set(query, count, results, kind="images")
        return results


_client: Optional[BraveClient] = None


def get_brave_client() -> BraveClient:
    """Get shared Brave client instance."""
    global _client
    if _client is None:
        _client = BraveClient()
    return _client


async def close_brave_client():
    """Close the shared client (call on shutdown)."""
    global _client
    if _client:
        await _client.close()
        _client = None
