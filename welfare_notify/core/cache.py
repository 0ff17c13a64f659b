"""
Public-data cache layer — (data_type, region) keyed entries with expiry.

Provides:
    • TTL-aware get / put with lazy eviction of expired entries
    • Last-known-good fallback read that ignores expiry (get_stale)
    • In-memory backend (default, injectable clock for tests)
    • Async Redis backend for multi-process deployments
    • Expired-entry sweep and hit/miss statistics

Every entry is stored as one JSON document, so a write is always a single
replace of the previous document and never a merge. A document that cannot
be decoded on read is treated as a miss and removed.

Two slots are kept per key:
    live   — the current entry, evicted when read after expires_at
    stale  — the last successfully written payload, kept for
             CACHE_STALE_RETENTION seconds and read only by get_stale()

Usage:
    from welfare_notify.core.cache import build_cache_store

    cache = build_cache_store()
    await cache.put("weather", "유성구", record.to_dict(), ttl=3600)
    lookup = await cache.get("weather", "유성구")
    if lookup.found:
        ...
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from welfare_notify.core.config import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

LIVE = "live"
STALE = "stale"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """One cached payload for a (data_type, region) pair."""
    data_type: str
    region: str
    payload: Any
    expires_at: datetime
    stored_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_json(self) -> str:
        return json.dumps(
            {
                "data_type": self.data_type,
                "region": self.region,
                "payload": self.payload,
                "expires_at": self.expires_at.isoformat(),
                "stored_at": self.stored_at.isoformat(),
            },
            default=str,
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        doc = json.loads(raw)
        return cls(
            data_type=doc["data_type"],
            region=doc["region"],
            payload=doc["payload"],
            expires_at=datetime.fromisoformat(doc["expires_at"]),
            stored_at=datetime.fromisoformat(doc["stored_at"]),
        )


@dataclass(frozen=True)
class CacheLookup:
    """Result of CacheStore.get()."""
    payload: Any = None
    found: bool = False
    expired: bool = False


class CacheStore(ABC):
    """
    Backend-agnostic cache logic. Subclasses provide raw slot storage.
    """

    def __init__(
        self,
        *,
        clock: Optional[Clock] = None,
        stale_retention_seconds: Optional[float] = None,
    ):
        self._clock = clock or utcnow
        self.stale_retention_seconds = (
            stale_retention_seconds
            if stale_retention_seconds is not None
            else settings.CACHE_STALE_RETENTION
        )
        self.hits = 0
        self.misses = 0

    # ── Backend primitives ──

    @abstractmethod
    async def _read(self, slot: str, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def _write(self, slot: str, key: str, raw: str, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    async def _delete(self, slot: str, key: str) -> None:
        ...

    @abstractmethod
    async def _keys(self, slot: str) -> List[str]:
        ...

    # ── Public API ──

    @staticmethod
    def make_key(data_type: str, region: str) -> str:
        return f"{data_type}:{region}"

    async def _load(self, slot: str, key: str) -> Optional[CacheEntry]:
        raw = await self._read(slot, key)
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Corrupt cache entry %s/%s removed: %s", slot, key, e)
            await self._delete(slot, key)
            return None

    async def get(self, data_type: str, region: str) -> CacheLookup:
        """Return the live entry; an expired entry is evicted and reported as a miss."""
        key = self.make_key(data_type, region)
        entry = await self._load(LIVE, key)

        if entry is None:
            self.misses += 1
            logger.debug("Cache MISS: %s", key)
            return CacheLookup()

        if entry.is_expired(self._clock()):
            await self._delete(LIVE, key)
            self.misses += 1
            logger.info("Expired cache entry evicted: %s", key)
            return CacheLookup(found=False, expired=True)

        self.hits += 1
        logger.debug("Cache HIT: %s", key)
        return CacheLookup(payload=entry.payload, found=True)

    async def put(self, data_type: str, region: str, payload: Any, ttl: float) -> CacheEntry:
        """Replace the entry for (data_type, region) with a new payload."""
        now = self._clock()
        entry = CacheEntry(
            data_type=data_type,
            region=region,
            payload=payload,
            expires_at=now + timedelta(seconds=ttl),
            stored_at=now,
        )
        key = self.make_key(data_type, region)
        raw = entry.to_json()
        await self._write(LIVE, key, raw, ttl)
        await self._write(STALE, key, raw, self.stale_retention_seconds)
        logger.info("Cached %s for %s (ttl=%ds)", data_type, region, ttl)
        return entry

    async def get_stale(self, data_type: str, region: str) -> Tuple[Any, bool]:
        """Last-resort read: the most recent payload regardless of expiry."""
        key = self.make_key(data_type, region)
        entry = await self._load(LIVE, key) or await self._load(STALE, key)
        if entry is None:
            return None, False
        return entry.payload, True

    async def cleanup_expired(self) -> int:
        """Sweep expired live entries and stale copies past retention."""
        now = self._clock()
        removed = 0
        for key in await self._keys(LIVE):
            entry = await self._load(LIVE, key)
            if entry is not None and entry.is_expired(now):
                await self._delete(LIVE, key)
                removed += 1

        stale_cutoff = now - timedelta(seconds=self.stale_retention_seconds)
        for key in await self._keys(STALE):
            entry = await self._load(STALE, key)
            if entry is not None and entry.stored_at < stale_cutoff:
                await self._delete(STALE, key)

        logger.info("Expired cache cleanup: %d entries removed", removed)
        return removed

    async def stats(self) -> Dict[str, int]:
        now = self._clock()
        total = valid = 0
        for key in await self._keys(LIVE):
            entry = await self._load(LIVE, key)
            if entry is None:
                continue
            total += 1
            if not entry.is_expired(now):
                valid += 1
        return {
            "total": total,
            "valid": valid,
            "expired": total - valid,
            "hits": self.hits,
            "misses": self.misses,
        }

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════════════════
# In-memory backend
# ═══════════════════════════════════════════════════════════════════════════

class MemoryCacheStore(CacheStore):
    """Process-local backend. Expiry is enforced by CacheStore, not by the dict."""

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self._data: Dict[Tuple[str, str], str] = {}

    async def _read(self, slot: str, key: str) -> Optional[str]:
        return self._data.get((slot, key))

    async def _write(self, slot: str, key: str, raw: str, ttl_seconds: float) -> None:
        self._data[(slot, key)] = raw

    async def _delete(self, slot: str, key: str) -> None:
        self._data.pop((slot, key), None)

    async def _keys(self, slot: str) -> List[str]:
        return [k for s, k in self._data if s == slot]


# ═══════════════════════════════════════════════════════════════════════════
# Redis backend
# ═══════════════════════════════════════════════════════════════════════════

class RedisCacheStore(CacheStore):
    """
    Async Redis backend.

    Redis key expiry is set slightly past the logical expiry so that the
    expired-read path (evict + report) still runs; the stale slot lives for
    the retention window.
    """

    EXPIRY_GRACE_SECONDS = 60

    def __init__(
        self,
        client: Any = None,
        *,
        url: Optional[str] = None,
        prefix: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._client = client
        self._url = url or settings.REDIS_URL
        self._prefix = prefix or settings.CACHE_KEY_PREFIX

    async def _get_redis(self):
        """Get or create async Redis client."""
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connected: %s", self._url)
        return self._client

    def _full_key(self, slot: str, key: str) -> str:
        return f"{self._prefix}:{slot}:{key}"

    async def _read(self, slot: str, key: str) -> Optional[str]:
        client = await self._get_redis()
        try:
            return await client.get(self._full_key(slot, key))
        except Exception as e:
            logger.warning("Cache GET error for %s: %s", key, e)
            return None

    async def _write(self, slot: str, key: str, raw: str, ttl_seconds: float) -> None:
        client = await self._get_redis()
        ex = int(ttl_seconds) + (self.EXPIRY_GRACE_SECONDS if slot == LIVE else 0)
        try:
            await client.set(self._full_key(slot, key), raw, ex=max(ex, 1))
        except Exception as e:
            logger.warning("Cache SET error for %s: %s", key, e)

    async def _delete(self, slot: str, key: str) -> None:
        client = await self._get_redis()
        try:
            await client.delete(self._full_key(slot, key))
        except Exception as e:
            logger.warning("Cache DELETE error for %s: %s", key, e)

    async def _keys(self, slot: str) -> List[str]:
        client = await self._get_redis()
        prefix = f"{self._prefix}:{slot}:"
        keys: List[str] = []
        try:
            async for full_key in client.scan_iter(f"{prefix}*"):
                keys.append(full_key[len(prefix):])
        except Exception as e:
            logger.warning("Cache SCAN error for %s*: %s", prefix, e)
        return keys

    async def ping(self) -> bool:
        client = await self._get_redis()
        try:
            return bool(await client.ping())
        except Exception as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")


def build_cache_store(backend: Optional[str] = None, **kwargs: Any) -> CacheStore:
    """Create the cache backend named by CACHE_BACKEND."""
    backend = (backend or settings.CACHE_BACKEND).lower()
    if backend == "redis":
        return RedisCacheStore(**kwargs)
    if backend == "memory":
        return MemoryCacheStore(**kwargs)
    raise ValueError(f"Unknown cache backend: {backend}")
