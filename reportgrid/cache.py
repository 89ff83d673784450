"""
Client-side caching for widgets, widget data and analysis results.
Implements a bounded in-memory TTL cache with a periodic expiry sweep.
"""
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .models import Widget
from .utils.config import SETTINGS
from .utils.threading import Scheduler, TimerHandle

log = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Represents a cached entry with metadata."""
    key: str
    data: Any
    timestamp: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class DataCache:
    """
    Bounded key/value cache with per-entry TTL.

    Expired entries are dropped lazily on read and by ``sweep()``. When the
    cache is full, inserting a new key evicts the oldest *inserted* entry;
    reads do not refresh an entry's position, so this only approximates LRU.
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        default_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries (default from settings)
            default_ttl: Default time to live in seconds (default from settings)
            clock: Monotonic time source in seconds
        """
        self.max_size = max_size or SETTINGS.cache_max_size
        self.default_ttl = default_ttl or SETTINGS.cache_default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()
        self._sweep_handle: Optional[TimerHandle] = None
        self._sweeper_stopped = True

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                log.debug(f"Expired cache entry: {key}")
                return None
            self._hits += 1
            return entry.data

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            data: Value to cache
            ttl: Time to live in seconds (default: cache default)
        """
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                log.debug(f"Evicted oldest cache entry: {oldest}")
            self._entries[key] = CacheEntry(
                key=key,
                data=data,
                timestamp=now,
                expires_at=now + ttl
            )

    def has(self, key: str) -> bool:
        """Check for a fresh entry without touching hit/miss statistics."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def sweep(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            log.debug(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        """Clear all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        log.debug("Cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics; hit_rate is a percentage."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "hit_rate": (self._hits / total) * 100 if total else 0.0,
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def start_sweeper(self, scheduler: Scheduler, interval: Optional[float] = None) -> None:
        """Run ``sweep()`` every ``interval`` seconds until ``stop_sweeper()``."""
        interval = interval or SETTINGS.cache_sweep_interval_seconds
        self.stop_sweeper()
        self._sweeper_stopped = False

        def tick():
            if self._sweeper_stopped:
                return
            self.sweep()
            with self._lock:
                if not self._sweeper_stopped:
                    self._sweep_handle = scheduler.call_later(interval, tick)

        with self._lock:
            self._sweep_handle = scheduler.call_later(interval, tick)

    @property
    def sweeping(self) -> bool:
        return not self._sweeper_stopped

    def stop_sweeper(self) -> None:
        with self._lock:
            self._sweeper_stopped = True
            if self._sweep_handle is not None:
                self._sweep_handle.cancel()
                self._sweep_handle = None

    def destroy(self) -> None:
        """Stop the sweeper and drop all entries."""
        self.stop_sweeper()
        self.clear()


def data_hash(*args, **kwargs) -> str:
    """Generate a deterministic hash from arbitrary JSON-able arguments."""
    key_data = {
        "args": args,
        "kwargs": sorted(kwargs.items())
    }
    key_string = json.dumps(key_data, sort_keys=True, default=str)
    return hashlib.sha256(key_string.encode()).hexdigest()


ANALYSIS_TTL_SECONDS = 10 * 60


class WidgetCache:
    """
    Write-through cache for widgets and their rendered data.

    Keys:
        widget:<id>
        widget-data:<id>:<data hash>
        analysis:<client>:<year>:<analysis type>
    """

    def __init__(self, cache: Optional[DataCache] = None):
        self.cache = cache or DataCache()

    def start_sweeper(self, scheduler: Scheduler, interval: Optional[float] = None) -> None:
        self.cache.start_sweeper(scheduler, interval)

    @property
    def sweeping(self) -> bool:
        return self.cache.sweeping

    def stop_sweeper(self) -> None:
        self.cache.stop_sweeper()

    def set_widget(self, widget: Widget) -> None:
        self.cache.set(f"widget:{widget.id}", widget.model_copy(deep=True))

    def get_widget(self, widget_id: str) -> Optional[Widget]:
        return self.cache.get(f"widget:{widget_id}")

    def set_widget_data(self, widget_id: str, hash_key: str, data: Any) -> None:
        self.cache.set(f"widget-data:{widget_id}:{hash_key}", data)

    def get_widget_data(self, widget_id: str, hash_key: str) -> Optional[Any]:
        return self.cache.get(f"widget-data:{widget_id}:{hash_key}")

    def invalidate_widget(self, widget_id: str) -> int:
        """Drop a widget and all of its cached data. Returns entries removed."""
        removed = int(self.cache.delete(f"widget:{widget_id}"))
        removed += self.cache.invalidate_prefix(f"widget-data:{widget_id}:")
        log.debug(f"Invalidated {removed} cache entries for widget {widget_id}")
        return removed

    @staticmethod
    def _analysis_key(client_id: str, fiscal_year: int, analysis_type: str) -> str:
        return f"analysis:{client_id}:{fiscal_year}:{analysis_type}"

    def set_analysis_result(
        self,
        client_id: str,
        fiscal_year: int,
        analysis_type: str,
        result: Any
    ) -> None:
        self.cache.set(
            self._analysis_key(client_id, fiscal_year, analysis_type),
            result,
            ttl=ANALYSIS_TTL_SECONDS
        )

    def get_analysis_result(
        self,
        client_id: str,
        fiscal_year: int,
        analysis_type: str
    ) -> Optional[Any]:
        return self.cache.get(self._analysis_key(client_id, fiscal_year, analysis_type))

    def get_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()
