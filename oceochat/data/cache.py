"""Read-through aggregation cache with per-domain TTL and single-flight fetches."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from oceochat.data.schema import (
    DATASET_ADAPTER,
    CacheEntry,
    DataRequest,
    Domain,
    FetchError,
    FetchResult,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CacheUnavailable(Exception):
    """The cache backend could not be reached or returned garbage."""


class CacheBackend(ABC):
    """Storage boundary: get-by-hash, put-with-expiry, atomic hit counter."""

    name: str

    @abstractmethod
    async def get(self, key: str, now: float) -> CacheEntry | None:
        """Return the live entry for key (incrementing its hit count) or None."""

    @abstractmethod
    async def put(self, entry: CacheEntry, ttl: float) -> None:
        """Store an entry that expires ttl seconds from now."""

    @abstractmethod
    async def evict_expired(self, now: float) -> int:
        """Drop entries past their expiry. Returns how many were removed."""

    @abstractmethod
    async def size(self) -> int | None:
        """Number of stored entries, when the backend can tell cheaply."""


class MemoryCacheBackend(CacheBackend):
    """In-process store bounded by max_entries.

    Every put sweeps expired entries; when still full, the least recently
    used entry goes.
    No method awaits while touching the dict, so each call runs atomically
    on the event loop and never blocks other keys.
    """

    name = "memory"

    def __init__(self, max_entries: int = 512) -> None:
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    async def get(self, key: str, now: float) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(now):
            return None
        entry.access_count += 1
        self._entries.move_to_end(key)
        return entry

    async def put(self, entry: CacheEntry, ttl: float) -> None:
        await self.evict_expired(entry.fetched_at)
        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        self._enforce_capacity()

    async def evict_expired(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.expires_at < now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def size(self) -> int | None:
        return len(self._entries)

    def _enforce_capacity(self) -> None:
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted least recently used cache entry %s", evicted[:12])


class RedisCacheBackend(CacheBackend):
    """Redis-backed store. Expiry is delegated to Redis key TTLs."""

    name = "redis"

    def __init__(self, client: Redis, prefix: str = "oceochat:cache:") -> None:
        self._client = client
        self._prefix = prefix

    def _data_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _hits_key(self, key: str) -> str:
        return f"{self._prefix}{key}:hits"

    async def get(self, key: str, now: float) -> CacheEntry | None:
        try:
            raw = await self._client.get(self._data_key(key))
            if raw is None:
                return None
            hits = await self._client.incr(self._hits_key(key))
        except RedisError as e:
            raise CacheUnavailable(f"redis get failed: {e}") from e

        try:
            doc = json.loads(raw)
            entry = CacheEntry(
                key=key,
                dataset=DATASET_ADAPTER.validate_python(doc["dataset"]),
                source_label=doc.get("source_label", ""),
                fetched_at=float(doc["fetched_at"]),
                expires_at=float(doc["expires_at"]),
                access_count=int(hits),
            )
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise CacheUnavailable(f"corrupt cache entry {key[:12]}: {e}") from e

        return None if entry.is_expired(now) else entry

    async def put(self, entry: CacheEntry, ttl: float) -> None:
        doc = {
            "dataset": DATASET_ADAPTER.dump_python(entry.dataset, mode="json"),
            "source_label": entry.source_label,
            "fetched_at": entry.fetched_at,
            "expires_at": entry.expires_at,
        }
        seconds = max(1, int(ttl))
        try:
            async with self._client.pipeline(transaction=False) as pipe:
                pipe.set(self._data_key(entry.key), json.dumps(doc), ex=seconds)
                pipe.set(self._hits_key(entry.key), 0, ex=seconds)
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable(f"redis put failed: {e}") from e

    async def evict_expired(self, now: float) -> int:
        return 0

    async def size(self) -> int | None:
        return None


class AggregationCache:
    """Read-through cache in front of the source adapters.

    At most one upstream fetch runs per cache key; concurrent callers for
    the same key wait on the leader's result. Backend faults degrade to
    cache misses and are never raised to callers.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        ttl_by_domain: dict[str, int] | None = None,
        default_ttl: float = 3600.0,
        clock: Clock = time.time,
    ) -> None:
        self._backend = backend or MemoryCacheBackend()
        self._ttl_by_domain = ttl_by_domain or {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._flights: dict[str, asyncio.Future[FetchResult]] = {}
        self.hits = 0
        self.misses = 0

    def ttl_for(self, domain: Domain) -> float:
        return float(self._ttl_by_domain.get(domain.value, self._default_ttl))

    async def get(self, request: DataRequest) -> CacheEntry | None:
        """Return the live entry for the request, or None."""
        try:
            return await self._backend.get(request.cache_key(), self._clock())
        except CacheUnavailable as e:
            logger.warning("Cache unavailable on get, treating as miss: %s", e)
            return None

    async def put(
        self,
        request: DataRequest,
        dataset: Any,
        ttl: float | None = None,
        source_label: str = "",
    ) -> CacheEntry:
        """Store a dataset for the request; ttl defaults to the domain TTL."""
        ttl = self.ttl_for(request.domain) if ttl is None else ttl
        now = self._clock()
        entry = CacheEntry(
            key=request.cache_key(),
            dataset=dataset,
            source_label=source_label,
            fetched_at=now,
            expires_at=now + ttl,
        )
        try:
            await self._backend.put(entry, ttl)
        except CacheUnavailable as e:
            logger.warning("Cache unavailable on put, result not cached: %s", e)
        return entry

    async def evict_expired(self) -> int:
        try:
            removed = await self._backend.evict_expired(self._clock())
        except CacheUnavailable as e:
            logger.warning("Cache unavailable during eviction: %s", e)
            return 0
        if removed:
            logger.info("Evicted %d expired cache entries", removed)
        return removed

    async def get_or_fetch(
        self,
        request: DataRequest,
        fetch: Callable[[], Awaitable[FetchResult]],
        source_label: str = "",
    ) -> tuple[FetchResult, bool]:
        """Serve from cache or run ``fetch`` under single-flight.

        Returns (result, from_cache). Only successful results are cached.
        If the leading fetch is cancelled or crashes, waiters receive a
        failed result instead of hanging.
        """
        key = request.cache_key()

        flight = self._flights.get(key)
        if flight is None:
            entry = await self.get(request)
            if entry is not None:
                self.hits += 1
                return FetchResult.ok(entry.dataset), True
            flight = self._flights.get(key)

        if flight is not None:
            logger.debug("Joining in-flight fetch for %s", key[:12])
            return await asyncio.shield(flight), False

        self.misses += 1
        flight = asyncio.get_running_loop().create_future()
        self._flights[key] = flight
        result = FetchResult.failed(FetchError.unavailable("fetch cancelled"))
        try:
            try:
                result = await fetch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Fetch for %s raised", request.domain.value)
                result = FetchResult.failed(FetchError.unavailable(f"fetch failed: {e}"))
            if result.succeeded:
                await self.put(request, result.dataset, source_label=source_label)
        finally:
            self._flights.pop(key, None)
            if not flight.done():
                flight.set_result(result)
        return result, False

    async def run_sweeper(self, interval: float) -> None:
        """Evict expired entries every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.evict_expired()

    async def stats(self) -> dict[str, Any]:
        try:
            entries = await self._backend.size()
        except CacheUnavailable:
            entries = None
        return {
            "backend": self._backend.name,
            "entries": entries,
            "hits": self.hits,
            "misses": self.misses,
            "inFlight": len(self._flights),
        }
