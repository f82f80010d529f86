"""
RiskScope — Query Cache Layer

Read-through cache for evidence-source queries and triage results, so a
repeated analysis does not burn search quota.

Cache Strategy:
    - Search responses: TTL = SERPAPI_CACHE_TTL_HOURS (default 24 hours)
    - Triage results:   TTL = TRIAGE_CACHE_TTL_HOURS  (default 6 hours)

Key Schema:
    rs:{namespace}:{normalized_key}   → JSON payload

Redis being down never fails a request: the cache disables itself and
every call becomes a miss.
"""
import hashlib
import json
import re
import time
from typing import Optional, Dict, Any

import redis
import structlog

logger = structlog.get_logger()


def normalize_query(query: str) -> str:
    """Normalize a query string into a stable cache key."""
    clean = re.sub(r"\s+", " ", query.strip().lower())
    return hashlib.sha256(clean.encode("utf-8")).hexdigest()[:24]


class QueryCache:
    """
    Usage:
        cache = QueryCache(redis_url, namespace="search", ttl_seconds=86400)

        cached = cache.get('"Acme" penipuan')
        if cached is None:
            payload = ...  # hit the source
            cache.set('"Acme" penipuan', payload)
    """

    def __init__(self, redis_url: str, namespace: str = "search", ttl_seconds: int = 86400):
        self._url = redis_url
        self._namespace = namespace
        self._ttl = ttl_seconds
        self._pool = None
        self._client: Optional[redis.Redis] = None
        self._enabled = True
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _key(self, query: str) -> str:
        return f"rs:{self._namespace}:{normalize_query(query)}"

    def _connect(self) -> Optional[redis.Redis]:
        """Lazy connect — only opens connection when first used."""
        if self._client is None:
            try:
                self._pool = redis.ConnectionPool.from_url(
                    self._url,
                    max_connections=20,
                    decode_responses=True,
                    socket_connect_timeout=3,
                    socket_timeout=2,
                    retry_on_timeout=True,
                )
                self._client = redis.Redis(connection_pool=self._pool)
                self._client.ping()
                logger.info("query_cache_connected",
                            namespace=self._namespace,
                            url=self._url.split("@")[-1])
            except redis.RedisError as e:
                logger.warning("query_cache_unavailable", namespace=self._namespace, error=str(e))
                self._enabled = False
                self._client = None
        return self._client

    def get(self, query: str) -> Optional[Dict[str, Any]]:
        """Returns None on cache miss or if Redis is down."""
        if not self._enabled:
            return None

        client = self._connect()
        if not client:
            return None

        try:
            raw = client.get(self._key(query))
        except redis.RedisError as e:
            logger.debug("cache_get_error", error=str(e))
            return None

        if raw is None:
            self._misses += 1
            return None
        self._hits += 1
        logger.debug("cache_hit", namespace=self._namespace, query=query[:60])
        return json.loads(raw)

    def set(self, query: str, payload: Dict[str, Any], ttl_seconds: Optional[int] = None) -> bool:
        if not self._enabled:
            return False

        client = self._connect()
        if not client:
            return False

        ttl = ttl_seconds or self._ttl
        try:
            client.setex(self._key(query), ttl, json.dumps(payload, default=str))
            logger.debug("cache_set", namespace=self._namespace, query=query[:60], ttl=ttl)
            return True
        except redis.RedisError as e:
            logger.debug("cache_set_error", error=str(e))
            return False

    def invalidate(self, query: str) -> bool:
        if not self._enabled:
            return False

        client = self._connect()
        if not client:
            return False

        try:
            return bool(client.delete(self._key(query)))
        except redis.RedisError:
            return False

    def stats(self) -> Dict[str, Any]:
        if not self._enabled:
            return {"enabled": False, "namespace": self._namespace}

        client = self._connect()
        if not client:
            return {"enabled": False, "connected": False, "namespace": self._namespace}

        try:
            keys = list(client.scan_iter(match=f"rs:{self._namespace}:*", count=500))
            return {
                "enabled": True,
                "connected": True,
                "namespace": self._namespace,
                "size": len(keys),
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "checked_at": time.time(),
            }
        except redis.RedisError as e:
            return {"enabled": True, "connected": False, "error": str(e)}

    def close(self):
        """Shutdown cache connections."""
        if self._pool:
            self._pool.disconnect()
            self._pool = None
            self._client = None
            logger.info("query_cache_disconnected", namespace=self._namespace)


class NullCache(QueryCache):
    """Always-miss cache for tests and for callers that opt out of caching."""

    def __init__(self):
        super().__init__("redis://disabled", namespace="null", ttl_seconds=1)
        self._enabled = False


_caches: Dict[str, QueryCache] = {}


def get_cache(namespace: str, redis_url: str, ttl_seconds: int) -> QueryCache:
    """Process-wide cache per namespace."""
    cache = _caches.get(namespace)
    if cache is None:
        cache = QueryCache(redis_url, namespace=namespace, ttl_seconds=ttl_seconds)
        _caches[namespace] = cache
    return cache


def close_caches():
    for cache in _caches.values():
        cache.close()
    _caches.clear()
