# data/storage/cache.py

import asyncio
import heapq
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import orjson
import redis.asyncio as redis
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from utils.constants import CACHE_MAX_ENTRIES, CACHE_SWEEP_INTERVAL_SECONDS, CACHE_TTL

logger = logging.getLogger(__name__)


def _consume_result(task: asyncio.Task) -> None:
    # Callers may all have detached; mark the error as retrieved
    if not task.cancelled():
        task.exception()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class CacheManager:
    """
    In-process TTL cache with single-flight computation.

    ``get_or_compute`` guarantees at most one concurrent computation per key:
    later callers await the in-flight result instead of starting their own.
    A failed computation is raised to every waiter and nothing is stored.
    The computation runs as a task owned by the cache, so a caller that is
    cancelled detaches from it while other callers keep waiting.

    Expired entries are dropped lazily on read and by a periodic sweep task.
    An optional Redis tier holds JSON payloads shared between processes.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or {}
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self.redis_client: Optional[Redis] = None
        self.is_connected = False

        self.default_ttl = float(self.config.get('cache_ttl', CACHE_TTL['default']))
        self.sweep_interval = float(
            self.config.get('cache_sweep_interval_seconds', CACHE_SWEEP_INTERVAL_SECONDS)
        )
        self.max_entries = int(self.config.get('cache_max_entries', CACHE_MAX_ENTRIES))

        # Per key class TTLs (in seconds); unlisted classes use cache_ttl
        self.ttl_settings = {k: v for k, v in CACHE_TTL.items() if k != 'default'}
        self.ttl_settings.update(self.config.get('ttl_settings') or {})

        self.stats = {
            'hits': 0,
            'misses': 0,
            'computations': 0,
            'coalesced': 0,
            'failures': 0,
            'expirations': 0,
            'evictions': 0,
            'redis_hits': 0,
            'redis_errors': 0,
        }

    # ============= Lifecycle =============

    async def start(self) -> None:
        """Connect the optional Redis tier and start the sweep task."""
        if self.config.get('redis_url') and not self.is_connected:
            await self.connect()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.debug(f"Cache sweep running every {self.sweep_interval}s")

    async def stop(self) -> None:
        """Stop the sweep task and disconnect Redis."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.disconnect()

    async def connect(self) -> None:
        """Establish connection to the Redis tier."""
        try:
            self.redis_client = redis.from_url(
                self.config['redis_url'],
                decode_responses=False,
                socket_keepalive=True,
                max_connections=self.config.get('redis_max_connections', 50),
                health_check_interval=30,
            )
            await self.redis_client.ping()
            self.is_connected = True
            logger.info("Successfully connected to Redis cache")
        except (RedisError, OSError) as e:
            # In-process tier keeps working without Redis
            logger.warning(f"Redis unavailable, using in-process cache only: {e}")
            self.redis_client = None
            self.is_connected = False

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            self.is_connected = False
            logger.info("Disconnected from Redis cache")

    # ============= Core API =============

    def ttl_for(self, cache_type: Optional[str] = None, ttl: Optional[float] = None) -> float:
        """Resolve the TTL for a key class, explicit ttl wins"""
        if ttl is not None:
            return float(ttl)
        if cache_type and cache_type in self.ttl_settings:
            return float(self.ttl_settings[cache_type])
        return self.default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Return a live value or None; expired entries are removed."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            self.stats['expirations'] += 1
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None,
            cache_type: Optional[str] = None) -> None:
        """Store a value with a TTL."""
        self._entries[key] = CacheEntry(value, self._clock() + self.ttl_for(cache_type, ttl))
        if len(self._entries) > self.max_entries:
            self._evict_overflow()

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        cache_type: Optional[str] = None,
        shared: bool = False
    ) -> Any:
        """
        Return the cached value for ``key`` or compute it exactly once.

        Args:
            key: Cache key
            compute: Zero-argument coroutine factory producing the value
            ttl: Explicit TTL in seconds, overrides ``cache_type``
            cache_type: Key class used to look up ``ttl_settings``
            shared: Value is JSON and may be stored in the Redis tier

        Returns:
            Cached or freshly computed value
        """
        entry = self._entries.get(key)
        if entry is not None:
            if entry.expires_at > self._clock():
                self.stats['hits'] += 1
                return entry.value
            del self._entries[key]
            self.stats['expirations'] += 1

        inflight = self._inflight.get(key)
        if inflight is not None:
            self.stats['coalesced'] += 1
            return await asyncio.shield(inflight)

        self.stats['misses'] += 1
        task = asyncio.create_task(
            self._compute(key, compute, self.ttl_for(cache_type, ttl), shared)
        )
        task.add_done_callback(_consume_result)
        self._inflight[key] = task
        return await asyncio.shield(task)

    async def _compute(self, key: str, compute: Callable[[], Awaitable[Any]],
                       ttl: float, shared: bool) -> Any:
        try:
            value = await self._load(key, compute, ttl, shared)
        except Exception:
            self.stats['failures'] += 1
            raise
        else:
            self.set(key, value, ttl=ttl)
            return value
        finally:
            self._inflight.pop(key, None)

    async def _load(self, key: str, compute: Callable[[], Awaitable[Any]],
                    ttl: float, shared: bool) -> Any:
        if shared and self.redis_client is not None:
            cached = await self._redis_get(key)
            if cached is not None:
                self.stats['redis_hits'] += 1
                return cached

        self.stats['computations'] += 1
        value = await compute()

        if shared and self.redis_client is not None:
            await self._redis_set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> bool:
        """Drop a single key; returns True when something was removed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def sweep(self) -> int:
        """Remove all expired entries, returning how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self.stats['expirations'] += len(expired)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self.stats['hits'] + self.stats['misses'] + self.stats['coalesced']
        served = self.stats['hits'] + self.stats['coalesced']
        return {
            **self.stats,
            'entries': len(self._entries),
            'inflight': len(self._inflight),
            'hit_rate': served / lookups if lookups else 0.0,
            'redis_connected': self.is_connected,
        }

    # ============= Internals =============

    def _evict_overflow(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        victims = heapq.nsmallest(
            overflow, self._entries.items(), key=lambda item: item[1].expires_at
        )
        for key, _ in victims:
            del self._entries[key]
        self.stats['evictions'] += overflow

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug(f"Cache sweep removed {removed} expired entries")

    async def _redis_get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.redis_client.get(key)
        except RedisError as e:
            self.stats['redis_errors'] += 1
            logger.warning(f"Redis get error for key {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(f"Discarding undecodable Redis value for {key}: {e}")
            return None

    async def _redis_set(self, key: str, value: Any, ttl: float) -> None:
        try:
            await self.redis_client.setex(key, max(1, int(ttl)), orjson.dumps(value))
        except (RedisError, TypeError) as e:
            self.stats['redis_errors'] += 1
            logger.warning(f"Redis set error for key {key}: {e}")
