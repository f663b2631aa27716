"""Caching of query results in Redis.

Provides:
- get_redis: Cached Redis client from REDIS_URL with decode_responses.
- cache_key: Stable namespaced key from a kind and request parameters.
- get_cached / set_cached: JSON payloads with TTL from settings.CACHE_TTL_SECONDS.

Caching is off unless settings.CACHE_ENABLED is true; the helpers then return
None / do nothing without touching Redis.
"""
import hashlib
import json
import logging
from typing import Any, Optional

import redis

from docsrag.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return a cached Redis client configured from settings.REDIS_URL."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def cache_key(kind: str, *parts: Any) -> str:
    """Compute a stable cache key for a request.

    Args:
        kind: Namespace, e.g. ``similar`` or ``answer``.
        parts: Request parameters; the first is normalized if it is a string.

    Returns:
        str: Namespaced cache key.
    """
    norm = [p.strip().lower() if i == 0 and isinstance(p, str) else p for i, p in enumerate(parts)]
    h = hashlib.sha256(json.dumps(norm, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"rag:{kind}:v1:{h}"


def get_cached(key: str) -> Optional[Any]:
    """Return the cached JSON payload under ``key``, if caching is on and it exists."""
    if not settings.CACHE_ENABLED:
        return None
    raw = get_redis().get(key)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Dropping undecodable cache entry %s", key)
        return None


def set_cached(key: str, value: Any) -> None:
    """Store a JSON-serializable payload under ``key`` with the configured TTL."""
    if not settings.CACHE_ENABLED:
        return
    get_redis().setex(key, settings.CACHE_TTL_SECONDS, json.dumps(value))
