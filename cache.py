"""
cache.py: response cache with a pluggable backing store.

  CacheGateway   get()/set() of JSON payloads; never raises
  MemoryStore    in-process TTLCache, lost on restart
  KVRestStore    durable Redis-over-REST store (Upstash / Vercel KV protocol)

The store is chosen once, from Settings, when the app is built.
"""

import json
import logging
import time
from typing import Any, Callable, Optional, Protocol

from cachetools import TTLCache

from errors import CacheError, ProviderError
from http_client import ProviderClient

logger = logging.getLogger("seo-analyzer.cache")

DEFAULT_TTL_SECONDS = 60 * 60 * 24


def make_cache_key(endpoint: str, url: str, keyword: Optional[str] = None) -> str:
    """Deterministic key for (endpoint, normalised url, keyword-or-empty)."""
    return f"seo:{endpoint}:{url}:{(keyword or '').strip()}"


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...


class MemoryStore:
    """
    Process-local store. Expiry is handled by TTLCache: an entry stored at t
    is gone once clock() >= t + ttl.
    """

    def __init__(
        self,
        ttl: int = DEFAULT_TTL_SECONDS,
        maxsize: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=clock)

    async def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        # TTLCache carries a single ttl fixed at construction
        self._entries[key] = value


class KVRestStore:
    """Durable store spoken to over the Redis REST protocol: POST [command, *args]."""

    def __init__(self, client: ProviderClient, url: str, token: str):
        self.client = client
        self.url = url
        self.headers = {"Authorization": f"Bearer {token}"}

    async def _command(self, *args) -> Any:
        try:
            data = await self.client.request_json(
                "kv-store",
                "POST",
                self.url,
                headers=self.headers,
                json=list(args),
                required=("result",),
            )
        except ProviderError as e:
            raise CacheError(str(e)) from e
        return data["result"]

    async def get(self, key: str) -> Optional[str]:
        result = await self._command("GET", key)
        if result is not None and not isinstance(result, str):
            raise CacheError(f"unexpected value type for {key}: {type(result).__name__}")
        return result

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._command("SET", key, value, "EX", ttl)


class CacheGateway:
    """
    Owns every cache entry. get() returns None on a miss *or* on any store
    failure; set() is best-effort and reports success as a bool.
    Concurrent writers to one key race; last write wins.
    """

    def __init__(self, store: CacheStore, ttl: int = DEFAULT_TTL_SECONDS):
        self.store = store
        self.ttl = ttl

    async def get(self, key: str) -> Any:
        try:
            raw = await self.store.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except (CacheError, ValueError) as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any) -> bool:
        try:
            await self.store.set(key, json.dumps(value, default=str), self.ttl)
            return True
        except (CacheError, TypeError, ValueError) as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False


def build_cache(settings, client: ProviderClient, clock: Callable[[], float] = time.monotonic) -> CacheGateway:
    if settings.durable_cache_enabled:
        logger.info("Cache: durable KV store")
        store: CacheStore = KVRestStore(client, settings.kv_rest_api_url, settings.kv_rest_api_token)
    else:
        logger.info("Cache: in-process memory")
        store = MemoryStore(
            ttl=settings.cache_ttl_seconds,
            maxsize=settings.cache_max_entries,
            clock=clock,
        )
    return CacheGateway(store, ttl=settings.cache_ttl_seconds)
