"""Rate quote cache and in-flight request de-duplication.

Keys are fingerprints of a normalized rate request: list fields are sorted
and weight/dimensions rounded so logically identical requests collide.
The cache is a bounded FIFO-expiry map (not LRU): entries expire after
their TTL and, when the bound is exceeded, the oldest by insertion
timestamp go first.

Both classes are plain instances constructed once at startup and passed to
consumers; the clock is injectable for tests.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_ENTRIES = 1000

T = TypeVar("T")
Clock = Callable[[], float]


@dataclass(frozen=True)
class RateRequest:
    """The fields of a rate request that determine its quote."""

    origin_zip: str
    dest_zip: str
    weight: float
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    service_types: Sequence[str] = field(default_factory=tuple)
    carrier_config_ids: Sequence[str] = field(default_factory=tuple)
    is_residential: bool = False

    def canonical(self) -> dict[str, Any]:
        """Normalized form: sorted lists, weight to 2 decimals, whole-inch dims."""
        return {
            "origin_zip": str(self.origin_zip).strip(),
            "dest_zip": str(self.dest_zip).strip(),
            # + 0.0 folds -0.0 into 0.0 so both encode identically
            "weight": round(float(self.weight), 2) + 0.0,
            "length": round(float(self.length or 0)) + 0,
            "width": round(float(self.width or 0)) + 0,
            "height": round(float(self.height or 0)) + 0,
            "service_types": sorted(str(s) for s in self.service_types),
            "carrier_config_ids": sorted(str(c) for c in self.carrier_config_ids),
            "is_residential": bool(self.is_residential),
        }

    def cache_key(self) -> str:
        return build_cache_key(self)


def build_cache_key(request: RateRequest) -> str:
    """Compute the deterministic SHA-256 fingerprint of a rate request."""
    canonical = json.dumps(request.canonical(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _resolve_key(key: RateRequest | str) -> str:
    return key if isinstance(key, str) else build_cache_key(key)


@dataclass
class CacheEntry:
    """Stored value with its insertion time and time-to-live (seconds)."""

    data: Any
    timestamp: float
    ttl: float


class RateCache:
    """Bounded time-expiring map from request fingerprint to rate quotes.

    Attributes:
        max_entries: Capacity bound enforced after every sweep.
        default_ttl: TTL in seconds used when ``set`` is given none.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: RateRequest | str) -> bool:
        entry = self._entries.get(_resolve_key(key))
        return entry is not None and not self._is_expired(entry, self._clock())

    @staticmethod
    def _is_expired(entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > entry.ttl

    def _sweep(self) -> None:
        """Drop expired entries, then the oldest until within capacity."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            del self._entries[key]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].timestamp)
            for key, _ in oldest[:overflow]:
                del self._entries[key]
            logger.debug("rate_cache_evict count=%d", overflow)

    def get(self, key: RateRequest | str) -> Any | None:
        """Return the cached value if present and unexpired, else None."""
        self._sweep()
        cache_key = _resolve_key(key)
        entry = self._entries.get(cache_key)
        if entry is not None and not self._is_expired(entry, self._clock()):
            self._hits += 1
            logger.debug("rate_cache_hit key=%s", cache_key[:12])
            return entry.data

        if entry is not None:
            del self._entries[cache_key]
        self._misses += 1
        logger.debug("rate_cache_miss key=%s", cache_key[:12])
        return None

    def set(self, key: RateRequest | str, value: Any, ttl: float | None = None) -> None:
        """Store a value; ``ttl`` defaults to ``default_ttl``."""
        self._sweep()
        self._entries[_resolve_key(key)] = CacheEntry(
            data=value,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        # A fresh insert may push the map past its bound
        self._sweep()

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def stats(self) -> dict[str, Any]:
        """Size plus hit/miss counters since the last clear."""
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": (self._hits / lookups) if lookups else 0.0,
        }


class RequestDeduplicator:
    """Coalesces concurrent identical async operations.

    While an operation for a key is in flight, later callers with the same
    key await the same result. The pending record is dropped as soon as the
    operation settles, successfully or not.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[Any]] = {}

    def pending_count(self) -> int:
        return len(self._pending)

    async def execute(
        self,
        key: RateRequest | str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``operation`` unless an identical one is already in flight.

        Args:
            key: Rate request or precomputed fingerprint.
            operation: Zero-argument factory for the awaitable.

        Returns:
            The operation's result (shared among concurrent callers).

        Raises:
            Whatever the operation raises, to every waiting caller.
        """
        dedup_key = _resolve_key(key)
        existing = self._pending.get(dedup_key)
        if existing is not None:
            logger.debug("dedup_join key=%s", dedup_key[:12])
            return await asyncio.shield(existing)

        future = asyncio.ensure_future(operation())
        self._pending[dedup_key] = future

        def _settled(done: asyncio.Future[Any]) -> None:
            if self._pending.get(dedup_key) is done:
                del self._pending[dedup_key]

        future.add_done_callback(_settled)
        # Shielded so one cancelled caller does not cancel the shared call
        return await asyncio.shield(future)

    def clear(self) -> None:
        """Forget in-flight records; running operations are not cancelled."""
        self._pending.clear()
