"""
Parameter cache for the size search.

Maps a coarse bucket (format, source size class, target/source ratio class) to
a running average of quality indices that previously met their ceiling. The
cache only seeds the search; a miss costs iterations, never correctness.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .logger_setup import get_logger

logger = get_logger(__name__)

BucketKey = Tuple[str, int, float]


@dataclass
class CacheEntry:
    """Aggregate of successful search parameters for one bucket."""
    bucket_key: BucketKey
    total_parameter: float
    observation_count: int
    last_updated: float

    @property
    def average(self) -> float:
        return self.total_parameter / self.observation_count

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.last_updated >= ttl_seconds


class ParameterCache:
    """Bucketed, TTL-bound, LRU-evicted map of bucket -> average quality."""

    def __init__(self, ttl_seconds: float = 3600, max_entries: int = 100,
                 clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[BucketKey, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def bucket_key(fmt: str, original_size_bytes: int, target_size_bytes: int) -> BucketKey:
        """Size bucketed down to 100 KB, ratio rounded to one decimal"""
        original_kb = original_size_bytes / 1024
        size_class = int(original_kb // 100) * 100
        ratio = target_size_bytes / original_size_bytes if original_size_bytes else 0.0
        return (fmt.lower(), size_class, round(ratio, 1))

    def get(self, fmt: str, original_size_bytes: int, target_size_bytes: int) -> Optional[int]:
        key = self.bucket_key(fmt, original_size_bytes, target_size_bytes)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock(), self.ttl_seconds):
                del self._entries[key]
                self._misses += 1
                logger.debug(f"Parameter cache entry expired: {key}")
                return None
            self._hits += 1
            return int(round(entry.average))

    def set(self, fmt: str, original_size_bytes: int, target_size_bytes: int, quality: int) -> None:
        key = self.bucket_key(fmt, original_size_bytes, target_size_bytes)
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(now, self.ttl_seconds):
                entry.total_parameter += quality
                entry.observation_count += 1
                entry.last_updated = now
                return

            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_least_recent()
            self._entries[key] = CacheEntry(
                bucket_key=key,
                total_parameter=float(quality),
                observation_count=1,
                last_updated=now,
            )

    def _evict_least_recent(self) -> None:
        oldest_key = min(self._entries, key=lambda k: self._entries[k].last_updated)
        del self._entries[oldest_key]
        logger.debug(f"Parameter cache evicted {oldest_key}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            entries: List[Dict[str, Any]] = [
                {
                    'key': '_'.join(str(part) for part in key),
                    'average_quality': int(round(entry.average)),
                    'count': entry.observation_count,
                    'age_seconds': round(now - entry.last_updated, 1),
                }
                for key, entry in self._entries.items()
            ]
            return {
                'size': len(self._entries),
                'max_size': self.max_entries,
                'hits': self._hits,
                'misses': self._misses,
                'entries': entries,
            }

    def __len__(self) -> int:
        return len(self._entries)
