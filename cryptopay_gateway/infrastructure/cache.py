"""In-memory TTL cache with LRU eviction and single-flight computation"""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, NamedTuple, Optional, Tuple

from cachetools import TLRUCache

from cryptopay_gateway.domain.exceptions import ConfigurationError
from cryptopay_gateway.infrastructure.observability.metrics import (
    cache_eviction_counter,
    cache_hit_counter,
    cache_miss_counter,
)


class _Entry(NamedTuple):
    value: Any
    inserted_at: float
    ttl: float


class _MeteredStore(TLRUCache):
    """cachetools store that counts capacity evictions; expiry is not an eviction"""

    def popitem(self):
        key, entry = super().popitem()
        cache_eviction_counter.inc()
        return key, entry


def _expires_at(key: Hashable, entry: _Entry, now: float) -> float:
    return entry.inserted_at + entry.ttl


class TTLCache:
    """
    Memoizes idempotent async reads.

    - TTL is absolute from insertion; reads update LRU order, never the TTL.
    - A per-call ttl also caps how old a hit may be, so a short-lived caller
      never sees an entry stored under a longer TTL past its own limit.
    - Concurrent misses for one key share a single compute (single-flight):
      the first caller computes, the rest await its result or its error.
      If that caller is cancelled the others retry instead of inheriting it.
    - Failed computes are not stored, so the next call retries.
    - When total weight exceeds max_size, least-recently-used entries go first.

    Storage is a cachetools TLRUCache. The map and the in-flight table are
    guarded by a threading.Lock that is never held across an await.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int,
        weigher: Callable[[Any], int] = lambda value: 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ConfigurationError("Cache TTL must be greater than 0")
        if max_size <= 0:
            raise ConfigurationError("Cache max size must be greater than 0")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._weigher = weigher
        self._clock = clock
        self._entries = self._new_store()
        self._in_flight: Dict[Hashable, asyncio.Future] = {}
        self._lock = threading.Lock()

    def _new_store(self) -> _MeteredStore:
        return _MeteredStore(
            maxsize=self.max_size,
            ttu=_expires_at,
            timer=self._clock,
            getsizeof=lambda entry: max(1, int(self._weigher(entry.value))),
        )

    def _lookup(self, key: Hashable, max_age: Optional[float] = None) -> Tuple[bool, Any]:
        # Caller holds the lock
        try:
            entry = self._entries[key]
        except KeyError:
            return False, None
        if max_age is not None and self._clock() - entry.inserted_at >= max_age:
            return False, None
        return True, entry.value

    def _store(self, key: Hashable, value: Any, ttl: float) -> None:
        # Caller holds the lock
        self._entries.pop(key, None)
        try:
            self._entries[key] = _Entry(value, self._clock(), ttl)
        except ValueError:
            # Heavier than the whole cache; serve it uncached
            pass

    async def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the fresh cached value for key, computing and storing it on a miss"""
        ttl = self.ttl_seconds if ttl is None else ttl
        if ttl <= 0:
            raise ConfigurationError("Cache TTL must be greater than 0")

        while True:
            with self._lock:
                hit, value = self._lookup(key, ttl)
                if hit:
                    cache_hit_counter.inc()
                    return value
                pending = self._in_flight.get(key)
                if pending is None:
                    future = asyncio.get_running_loop().create_future()
                    self._in_flight[key] = future
                    cache_miss_counter.inc()

            if pending is None:
                break
            try:
                # Shielded so one cancelled waiter does not cancel the shared result
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # The computing caller went away; take over or join the next compute

        try:
            value = await compute()
        except asyncio.CancelledError:
            with self._lock:
                self._in_flight.pop(key, None)
            future.cancel()
            raise
        except Exception as exc:
            with self._lock:
                self._in_flight.pop(key, None)
            future.set_exception(exc)
            future.exception()  # mark retrieved when nobody else was waiting
            raise

        with self._lock:
            self._in_flight.pop(key, None)
            self._store(key, value, ttl)
        future.set_result(value)
        return value

    def get(self, key: Hashable) -> Tuple[bool, Any]:
        """Return (hit, value) without computing"""
        with self._lock:
            return self._lookup(key)

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry; returns whether it was present"""
        with self._lock:
            present = key in self._entries
            self._entries.pop(key, None)
            return present

    def clear(self) -> None:
        with self._lock:
            # A fresh store, so clearing is not counted as eviction
            self._entries = self._new_store()

    def stats(self) -> Tuple[int, int]:
        """Return (entry count, total weight)"""
        with self._lock:
            self._entries.expire()
            return len(self._entries), int(self._entries.currsize)

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)
