"""Query result caching (in-memory LRU+TTL or Redis).

Provides:
- MISS / CacheMiss: sentinel returned by get() on a miss (not an exception).
- CacheEntry: immutable (key, value, created_at) record.
- QueryCache: bounded LRU with per-entry TTL and an injectable clock.
- RedisQueryCache: same interface on Redis (SETEX with JSON values).
- make_cache_key: stable namespaced key from query + mode + limit + params.
- get_redis / build_query_cache: client and backend selection from settings.

QueryCache lookups take no lock: entries are immutable and replaced wholesale, so a
reader sees either the old entry or the new one. The LRU touch on a hit, writes and
evictions are serialized under one lock.
"""
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis

from netdoc_rag.config import settings

logger = logging.getLogger(__name__)


class CacheMiss:
    """Type of the MISS sentinel."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = CacheMiss()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float


def make_cache_key(query: str, mode: str = "hybrid", limit: Optional[int] = None, **params: Any) -> str:
    """Compute a stable cache key for a retrieval call.

    Args:
        query: Search string; stripped and lowercased.
        mode: Retrieval mode (e.g. "hybrid").
        limit: Result limit.
        **params: Any other parameter that changes the result (intent, thresholds...).

    Returns:
        str: Namespaced key "rag:retrieval:v1:<sha256>".
    """
    payload = {"q": query.strip().lower(), "mode": mode, "limit": limit, **params}
    blob = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    h = hashlib.sha256(blob.encode("utf-8")).hexdigest()
    return f"rag:retrieval:v1:{h}"


class QueryCache:
    """Bounded in-memory LRU cache with per-entry TTL.

    Args:
        ttl_seconds: Entry lifetime (default settings.CACHE_TTL_SECONDS).
        capacity: Maximum number of entries (default settings.CACHE_CAPACITY).
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        capacity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = float(settings.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        self.capacity = int(settings.CACHE_CAPACITY if capacity is None else capacity)
        if self.capacity <= 0:
            raise ValueError("cache capacity must be positive")
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any:
        """Return the cached value, or MISS when absent, expired or evicted.

        A hit marks the entry as recently used but does not extend its TTL.
        """
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.created_at >= self.ttl:
            self.misses += 1
            return MISS
        with self._lock:
            # a concurrent writer may have evicted it after the lookup; the entry read is still whole
            if key in self._entries:
                self._entries.move_to_end(key)
            self.hits += 1
        return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store value under key, replacing any existing entry (last write wins)."""
        entry = CacheEntry(key=key, value=value, created_at=self._clock())
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            now = entry.created_at
            expired = [k for k, e in self._entries.items() if now - e.created_at >= self.ttl]
            for k in expired:
                del self._entries[k]
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "size": len(self._entries),
            "capacity": self.capacity,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
        }


_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return a cached Redis client configured from settings.REDIS_URL.

    Returns:
        redis.Redis: Client with decode_responses=True.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


class RedisQueryCache:
    """QueryCache interface on Redis; values are JSON, expiry via SETEX.

    Capacity is left to the server's eviction policy (maxmemory-policy allkeys-lru).
    Redis errors are logged and reported as a miss / skipped write.
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        self._client = client
        self.ttl = int(settings.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        self.hits = 0
        self.misses = 0

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    def get(self, key: str) -> Any:
        try:
            raw = self.client.get(key)
        except redis.RedisError:
            logger.warning("Redis GET failed for %s", key, exc_info=True)
            self.misses += 1
            return MISS
        if raw is None:
            self.misses += 1
            return MISS
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            self.misses += 1
            return MISS
        self.hits += 1
        return value

    def set(self, key: str, value: Any) -> None:
        try:
            self.client.setex(key, self.ttl, json.dumps(value, ensure_ascii=False))
        except redis.RedisError:
            logger.warning("Redis SETEX failed for %s", key, exc_info=True)

    def clear(self) -> None:
        """Delete every retrieval cache key."""
        try:
            for key in self.client.scan_iter(match="rag:retrieval:*"):
                self.client.delete(key)
        except redis.RedisError:
            logger.warning("Redis clear failed", exc_info=True)
        self.hits = 0
        self.misses = 0

    def stats(self) -> Dict[str, Any]:
        return {"backend": "redis", "ttl_seconds": self.ttl, "hits": self.hits, "misses": self.misses}


def build_query_cache():
    """Create the cache selected by settings.CACHE_BACKEND ("memory" or "redis")."""
    backend = settings.CACHE_BACKEND.strip().lower()
    if backend == "redis":
        logger.info("Using Redis query cache at %s", settings.REDIS_URL)
        return RedisQueryCache()
    if backend != "memory":
        raise ValueError(f"unknown CACHE_BACKEND {settings.CACHE_BACKEND!r}")
    return QueryCache()
