"""Signed URL cache with per-entry expiry.

Signed storage URLs are short-lived and costly to issue, so they are
memoized per key (usually the storage path) until shortly before they
expire. Every entry is stored with a safety buffer subtracted from the
provider TTL, so a URL handed out from the cache always has at least
``SAFETY_BUFFER_SECONDS`` of validity left.

Two backends share one contract:

- ``InMemorySignedUrlCache``: process-local bounded map, expired entries
  removed lazily on lookup.
- ``RedisSignedUrlCache``: shared across instances; Redis drops entries on
  its own once the buffered lifetime is over.

Request handlers depend on ``get_signed_url_cache`` and never on a
concrete backend.
"""

from __future__ import annotations

import json
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)

SAFETY_BUFFER_SECONDS = 3

# Returns the current time as epoch seconds
Clock = Callable[[], float]


@dataclass(frozen=True)
class CachedSignedUrl:
    """A cache hit: the URL and how long it stays valid."""

    url: str
    expires_in_seconds: int


@dataclass
class CacheEntry:
    url: str
    expires_at: float


def remaining_seconds(expires_at: float, now: float) -> int:
    """Whole seconds left until ``expires_at``, never negative."""
    return max(0, math.floor(expires_at - now))


class SignedUrlCache(Protocol):
    """Contract shared by all signed URL cache backends."""

    async def get(self, key: str) -> CachedSignedUrl | None: ...

    async def set(self, key: str, url: str, ttl_seconds: int) -> None: ...

    async def clear(self, key: str) -> None: ...


class InMemorySignedUrlCache:
    """Process-local signed URL cache.

    Entries past their expiry are deleted the first time they are looked
    up. When ``max_entries`` is reached, expired entries are purged and,
    if the map is still full, the entry closest to expiry is dropped.
    """

    def __init__(self, max_entries: int = 1024, clock: Clock = time.time) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> CachedSignedUrl | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if now >= entry.expires_at:
            del self._entries[key]
            logger.debug("signed_url_cache_expired", cache_key=key)
            return None

        return CachedSignedUrl(
            url=entry.url,
            expires_in_seconds=remaining_seconds(entry.expires_at, now),
        )

    async def set(self, key: str, url: str, ttl_seconds: int) -> None:
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._make_room(now)

        self._entries[key] = CacheEntry(
            url=url,
            expires_at=now + ttl_seconds - SAFETY_BUFFER_SECONDS,
        )
        logger.debug("signed_url_cache_set", cache_key=key, ttl=ttl_seconds)

    async def clear(self, key: str) -> None:
        self._entries.pop(key, None)

    def _make_room(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        if len(self._entries) >= self.max_entries:
            soonest = min(self._entries, key=lambda k: self._entries[k].expires_at)
            del self._entries[soonest]


class RedisSignedUrlCache:
    """Signed URL cache shared between instances through Redis.

    Values are stored as JSON ``{"url", "expiresAt"}`` under
    ``signed-url:<key>`` with a Redis expiry equal to the buffered
    lifetime. Redis failures are logged and treated as cache misses.
    """

    KEY_PREFIX = "signed-url"

    def __init__(self, redis: Redis, clock: Clock = time.time) -> None:
        self.redis = redis
        self._clock = clock

    @classmethod
    def cache_key(cls, key: str) -> str:
        return f"{cls.KEY_PREFIX}:{key}"

    async def get(self, key: str) -> CachedSignedUrl | None:
        cache_key = self.cache_key(key)
        try:
            raw = await self.redis.get(cache_key)
            if not raw:
                return None

            data = json.loads(raw)
            now = self._clock()
            if now >= data["expiresAt"]:
                await self.redis.delete(cache_key)
                return None

            return CachedSignedUrl(
                url=data["url"],
                expires_in_seconds=remaining_seconds(data["expiresAt"], now),
            )
        except Exception as e:
            logger.warning("signed_url_cache_get_failed", cache_key=cache_key, error=str(e))
            return None

    async def set(self, key: str, url: str, ttl_seconds: int) -> None:
        cache_key = self.cache_key(key)
        now = self._clock()
        expires_at = now + ttl_seconds - SAFETY_BUFFER_SECONDS
        lifetime_ms = int((expires_at - now) * 1000)
        try:
            if lifetime_ms <= 0:
                # Already stale; make sure an older value is not served either
                await self.redis.delete(cache_key)
                return
            payload = json.dumps({"url": url, "expiresAt": expires_at})
            await self.redis.set(cache_key, payload, px=lifetime_ms)
            logger.debug("signed_url_cache_set", cache_key=cache_key, ttl=ttl_seconds)
        except Exception as e:
            logger.warning("signed_url_cache_set_failed", cache_key=cache_key, error=str(e))

    async def clear(self, key: str) -> None:
        cache_key = self.cache_key(key)
        try:
            await self.redis.delete(cache_key)
        except Exception as e:
            logger.warning(
                "signed_url_cache_clear_failed", cache_key=cache_key, error=str(e)
            )


# Process-wide cache (set during app startup)
_signed_url_cache: SignedUrlCache | None = None


def set_signed_url_cache(cache: SignedUrlCache | None) -> None:
    """Install the cache backend chosen at startup."""
    global _signed_url_cache
    _signed_url_cache = cache


def get_signed_url_cache() -> SignedUrlCache:
    """FastAPI dependency for the signed URL cache.

    Usage:
        ```python
        @router.post("/signed-url")
        async def signed_url(cache: SignedUrlCache = Depends(get_signed_url_cache)):
            hit = await cache.get(storage_path)
        ```
    """
    if _signed_url_cache is None:
        raise RuntimeError(
            "Signed URL cache not initialized. Call set_signed_url_cache first."
        )
    return _signed_url_cache
