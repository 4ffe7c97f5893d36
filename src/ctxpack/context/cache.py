"""In-memory cache of aggregation results with adaptive TTL."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable

from ctxpack.context.models import AggregateOptions, AggregateResult, CacheEntry, CacheStats

logger = logging.getLogger("ctxpack.cache")


class ContextCache:
    """Thread-safe key -> (result, expiry) store.

    Results with active work expire after `ttl_seconds`; completed-only
    results change less often and live `completed_ttl_multiplier` times longer.
    Expired entries are dropped when read, and swept in bulk once the store
    grows past `capacity`.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        capacity: int = 100,
        completed_ttl_multiplier: int = 6,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self.completed_ttl_multiplier = completed_ttl_multiplier
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._requests = 0

    @staticmethod
    def make_key(item_id: str, scope: str | None, options: AggregateOptions) -> str:
        """Deterministic key over the options that change the result."""
        normalized = json.dumps(
            {
                "depth": options.depth,
                "include_types": sorted(options.include_types),
                "max_age_months": options.max_age_months,
                "max_related": options.max_related,
            },
            sort_keys=True,
        )
        digest = hashlib.sha256(normalized.encode()).hexdigest()[:16]
        return f"context:{item_id}:{scope or 'default'}:{digest}"

    def ttl_for(self, data: AggregateResult) -> int:
        if data.summary.active_work > 0:
            return self.ttl_seconds
        return self.ttl_seconds * self.completed_ttl_multiplier

    def get(self, key: str) -> AggregateResult | None:
        with self._lock:
            self._requests += 1
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expiry:
                del self._entries[key]
                return None
            self._hits += 1
            return entry.data

    def set(self, key: str, data: AggregateResult) -> int:
        """Store `data` and return the TTL it was given."""
        ttl = self.ttl_for(data)
        with self._lock:
            self._entries[key] = CacheEntry(data=data, expiry=self._clock() + ttl)
            if len(self._entries) > self.capacity:
                self.sweep()
        return ttl

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now > entry.expiry]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def invalidate(self, item_id: str) -> int:
        """Drop every entry for one item, whatever its scope or options."""
        prefix = f"context:{item_id}:"
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Context cache cleared")

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            expired = sum(1 for entry in self._entries.values() if now > entry.expiry)
            total = len(self._entries)
            return CacheStats(
                total=total,
                valid=total - expired,
                expired=expired,
                hit_rate=self._hits / max(self._requests, 1),
            )

    def __len__(self) -> int:
        return len(self._entries)
