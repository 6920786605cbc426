"""Response cache for diagnosis results.

Bounded LRU with lazy TTL expiry, plus the pure cache-key function that
makes semantically identical requests collide.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Generic, TypeVar

from .models import CacheEntry, CacheStats, DiagnosisRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL_SECONDS = 30 * 60


def make_cache_key(request: DiagnosisRequest) -> str:
    """Create a stable key that identifies this class of request.

    Same truck, same symptoms in any order or letter case, same urgency
    -> same key. Additional free-text context is part of the key.

    Combines:
    - Symptoms (lower-cased, stripped, sorted, de-duplicated)
    - Truck identity (make, model, year, engine)
    - Additional info
    - Urgency
    """
    truck = request.truck
    normalized = {
        "symptoms": sorted({s.strip().lower() for s in request.symptoms}),
        "make": truck.make.strip().lower(),
        "model": truck.model.strip().lower(),
        "year": truck.year,
        "engine": (truck.engine or "").strip().lower(),
        "info": (request.additional_info or "").strip().lower(),
        "urgency": request.urgency.value,
    }
    key_input = json.dumps(normalized, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(key_input.encode()).hexdigest()


class ResponseCache(Generic[T]):
    """Access-order LRU cache with per-entry TTL.

    - A read moves the entry to the most-recently-used end.
    - A read of an entry older than its TTL removes it and reports a miss.
    - An insert past capacity evicts the least-recently-used entry, so the
      size never exceeds max_size.

    Mutated from the request path only. Concurrent inserts from separate
    tasks are last-writer-wins; there are no awaits inside any method, so
    each call is atomic with respect to the event loop.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> T | None:
        """Return the cached payload, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            logger.debug(f"Cache entry {key[:12]} expired")
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return entry.payload

    def set(self, key: str, payload: T, ttl_seconds: float | None = None) -> None:
        """Insert or replace an entry, evicting the LRU entry if full."""
        if key in self._entries:
            del self._entries[key]

        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full ({self.max_size}), evicted {evicted[:12]}")

        self._entries[key] = CacheEntry(
            payload=payload,
            inserted_at=self._clock(),
            ttl=ttl_seconds if ttl_seconds is not None else self.ttl_seconds,
        )

    def clear(self) -> None:
        """Remove every entry. Hit/miss counters are kept."""
        self._entries.clear()
        logger.info("Response cache cleared")

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            max_size=self.max_size,
            hits=self._hits,
            misses=self._misses,
        )
