"""
In-process TTL cache for AI context snapshots

Holds a handful of named, expensive-to-build aggregates (inventory context,
external context, per-user context). Entries expire lazily: an entry older
than its TTL is treated as absent and dropped the next time it is read.

The instance is owned by the insights app config and passed to the context
builders; tests construct their own with a fake clock.
"""
import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

INVENTORY_CONTEXT_KEY = 'inventory_context'
EXTERNAL_CONTEXT_KEY = 'external_context'
USER_CONTEXT_KEY_PREFIX = 'user_context_'

# Cache TTLs (in seconds)
TTL_CONFIG = {
    'inventory': 300,  # 5 minutes
    'external': 900,  # 15 minutes
    'user_specific': 120,  # 2 minutes
}


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp <= self.ttl


class ContextCache:
    """Thread-safe map of key -> (value, timestamp, ttl) with lazy expiry."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._build_locks: Dict[str, threading.Lock] = {}
        # Bumped on every invalidation; a build started under an older
        # generation must not store its result
        self._generations: Dict[str, int] = {}
        self.hit_count = 0
        self.miss_count = 0

    def set(self, key: str, value: Any, kind: str = 'inventory') -> None:
        """Store value under key with the TTL of its kind"""
        ttl = _ttl_for(kind)
        with self._lock:
            self._entries[key] = CacheEntry(data=value, timestamp=self._clock(), ttl=ttl)

    def generation(self, key: str) -> int:
        with self._lock:
            return self._generations.get(key, 0)

    def set_if_current(self, key: str, value: Any, kind: str, generation: int) -> bool:
        """Store value only if key was not invalidated since `generation` was read"""
        ttl = _ttl_for(kind)
        with self._lock:
            if self._generations.get(key, 0) != generation:
                logger.debug(f"Discarding build for {key}: invalidated while building")
                return False
            self._entries[key] = CacheEntry(data=value, timestamp=self._clock(), ttl=ttl)
            return True

    def _bump(self, key: str) -> None:
        # Caller holds self._lock
        self._generations[key] = self._generations.get(key, 0) + 1

    def get(self, key: str) -> Any:
        """Return the cached value, or None when absent or expired"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                logger.debug(f"Context cache entry expired: {key}")
                return None
            return entry.data

    def get_with_stats(self, key: str) -> Any:
        """get() that also records a hit or a miss"""
        value = self.get(key)
        with self._lock:
            if value is None:
                self.miss_count += 1
            else:
                self.hit_count += 1
        logger.debug(f"Context cache {'MISS' if value is None else 'HIT'} for {key}")
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._bump(key)

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matched by the regex pattern, returns how many were removed"""
        regex = re.compile(pattern)
        with self._lock:
            matched = [key for key in self._entries if regex.search(key)]
            for key in matched:
                del self._entries[key]
            # Keys being built right now may not have an entry yet
            building = [key for key in self._build_locks if regex.search(key)]
            for key in set(matched) | set(building):
                self._bump(key)
        if matched:
            logger.info(f"Context cache invalidated pattern {pattern!r}: {len(matched)} keys")
        return len(matched)

    def clear(self) -> None:
        with self._lock:
            for key in set(self._entries) | set(self._build_locks):
                self._bump(key)
            self._entries.clear()
        logger.info("Context cache cleared")

    def cleanup_expired(self) -> int:
        """Drop expired entries without waiting for them to be read"""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Entry counts, hit rate and a rough size estimate for monitoring"""
        with self._lock:
            now = self._clock()
            entries = list(self._entries.items())
            hits, misses = self.hit_count, self.miss_count
        valid = sum(1 for _, entry in entries if entry.is_valid(now))
        lookups = hits + misses
        return {
            'total_entries': len(entries),
            'valid_entries': valid,
            'expired_entries': len(entries) - valid,
            'hits': hits,
            'misses': misses,
            'cache_hit_rate': hits / lookups if lookups else 0,
            'memory_usage': sum(_estimate_size(key, entry.data) for key, entry in entries),
        }

    def get_or_build(self, key: str, builder: Callable[[], Any], kind: str = 'inventory') -> Any:
        """
        Return the cached value for key, building and storing it on a miss.

        Concurrent misses on the same key wait on a per-key lock, so the
        builder runs once and the waiting callers read its result. A key
        invalidated while its builder runs keeps no entry: the built value
        is returned to the caller but not stored.
        """
        value = self.get_with_stats(key)
        if value is not None:
            return value

        with self._key_lock(key):
            value = self.get(key)
            if value is not None:
                return value
            generation = self.generation(key)
            value = builder()
            if value is not None:
                self.set_if_current(key, value, kind, generation)
            return value

    def _key_lock(self, key: str) -> threading.Lock:
        with self._lock:
            return self._build_locks.setdefault(key, threading.Lock())

    # --- Named context helpers ---

    def get_inventory_context(self):
        return self.get_with_stats(INVENTORY_CONTEXT_KEY)

    def set_inventory_context(self, context) -> None:
        self.set(INVENTORY_CONTEXT_KEY, context, 'inventory')

    def get_external_context(self):
        return self.get_with_stats(EXTERNAL_CONTEXT_KEY)

    def set_external_context(self, context) -> None:
        self.set(EXTERNAL_CONTEXT_KEY, context, 'external')

    def get_user_context(self, user_id):
        return self.get_with_stats(f"{USER_CONTEXT_KEY_PREFIX}{user_id}")

    def set_user_context(self, user_id, context) -> None:
        self.set(f"{USER_CONTEXT_KEY_PREFIX}{user_id}", context, 'user_specific')

    def invalidate_inventory_cache(self) -> int:
        return self.invalidate_pattern('inventory_')

    def invalidate_user_cache(self, user_id) -> None:
        self.invalidate(f"{USER_CONTEXT_KEY_PREFIX}{user_id}")

    def invalidate_user_contexts(self) -> int:
        """Drop every per-user prompt, they embed inventory data"""
        return self.invalidate_pattern(f"^{USER_CONTEXT_KEY_PREFIX}")


def _ttl_for(kind: str) -> float:
    try:
        return TTL_CONFIG[kind]
    except KeyError:
        raise ValueError(f"Unknown cache kind: {kind!r}")


def _estimate_size(key: str, data: Any) -> int:
    if hasattr(data, 'to_dict'):
        data = data.to_dict()
    return len(key) + len(json.dumps(data, default=str))


def get_context_cache() -> ContextCache:
    """The process-wide cache owned by the insights app"""
    from django.apps import apps
    return apps.get_app_config('insights').context_cache
