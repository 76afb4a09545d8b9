# weather_cache.py
#
#   In-process TTL cache for weather snapshots.
#   Keyed by (source, rounded coordinates, target hour). Not persisted and not
#   shared between processes; a miss only costs one upstream call.

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from config.settings import WEATHER_CACHE_TTL_MINUTES
from flightguard.models import WeatherSnapshot, WeatherSource
from flightguard.timezone_utils import truncate_to_hour

COORDINATE_PRECISION = 3  # ~100 m
DEFAULT_MAX_ENTRIES = 100

CacheKey = Tuple[str, float, float, str]


def make_cache_key(source: WeatherSource, lat: float, lon: float, target_time: datetime) -> CacheKey:
    return (
        WeatherSource(source).value,
        round(lat, COORDINATE_PRECISION),
        round(lon, COORDINATE_PRECISION),
        truncate_to_hour(target_time).isoformat(),
    )


class WeatherCache:
    """
    get/set/evict over a dict of key -> (snapshot, stored_at, expires_at).

    Expired entries are swept on write once the cache grows past max_entries.
    All methods take the current time so callers (and tests) control the clock.
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=WEATHER_CACHE_TTL_MINUTES),
                 max_entries: int = DEFAULT_MAX_ENTRIES):
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: Dict[CacheKey, Tuple[WeatherSnapshot, datetime, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey, now: datetime) -> Optional[WeatherSnapshot]:
        entry = self.get_entry(key, now)
        return entry[0] if entry else None

    def get_entry(self, key: CacheKey, now: datetime) -> Optional[Tuple[WeatherSnapshot, datetime]]:
        """(snapshot, time it was stored) for a live entry, else None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            snapshot, stored_at, expires_at = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return snapshot, stored_at

    def set(self, key: CacheKey, snapshot: WeatherSnapshot, now: datetime) -> datetime:
        expires_at = now + self.ttl
        with self._lock:
            self._entries[key] = (snapshot, now, expires_at)
            if len(self._entries) > self.max_entries:
                self._evict_expired_locked(now)
        return expires_at

    def evict_expired(self, now: datetime) -> int:
        with self._lock:
            return self._evict_expired_locked(now)

    def _evict_expired_locked(self, now: datetime) -> int:
        expired = [key for key, (_, _, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)
