# weather_router.py
#
#   Picks a weather provider by lead time and caches the result:
#   - flight < 4 days away: high-resolution provider (Tomorrow.io)
#   - otherwise: general forecast provider (OpenWeather)
#   No retries here; an UpstreamError goes straight back to the caller.

import logging
from datetime import datetime, timedelta
from typing import Callable, NamedTuple

from flightguard.api.weather_cache import WeatherCache, make_cache_key
from flightguard.exceptions import UpstreamError
from flightguard.models import Location, WeatherSnapshot, WeatherSource
from flightguard.timezone_utils import now as utc_now, to_utc

logger = logging.getLogger(__name__)

HIGH_RESOLUTION_WINDOW = timedelta(days=4)


class WeatherReport(NamedTuple):
    snapshot: WeatherSnapshot
    source: WeatherSource
    fetched_at: datetime
    from_cache: bool = False


class WeatherRouter:
    """
    Args:
        high_resolution_provider: used when the lead time is under 4 days
        general_provider: used for everything further out
        cache: WeatherCache shared by every lookup made through this router
        clock: returns the current UTC time
    """

    def __init__(self, high_resolution_provider, general_provider, cache: WeatherCache = None,
                 clock: Callable[[], datetime] = utc_now,
                 high_resolution_window: timedelta = HIGH_RESOLUTION_WINDOW):
        self.high_resolution_provider = high_resolution_provider
        self.general_provider = general_provider
        self.cache = cache if cache is not None else WeatherCache()
        self.clock = clock
        self.high_resolution_window = high_resolution_window

    def select_provider(self, target_time: datetime, current_time: datetime = None):
        current_time = current_time or self.clock()
        lead_time = to_utc(target_time) - current_time
        if lead_time < self.high_resolution_window:
            return self.high_resolution_provider
        return self.general_provider

    def get_weather(self, location: Location, target_time: datetime) -> WeatherReport:
        """
        Weather for a location at the target time.
        Returns:
            WeatherReport: snapshot, source, fetch time and whether it came from the cache
        Raises:
            UpstreamError: the selected provider failed or timed out
        """
        current_time = self.clock()
        provider = self.select_provider(target_time, current_time)
        source = provider.source
        key = make_cache_key(source, location.latitude, location.longitude, target_time)

        cached = self.cache.get_entry(key, current_time)
        if cached is not None:
            logger.debug(f"Weather cache hit for {location.name} ({source.value}, {key[3]})")
            snapshot, fetched_at = cached
            return WeatherReport(snapshot, source, fetched_at, from_cache=True)

        logger.info(
            f"Fetching {source.value} weather for {location.name} at {to_utc(target_time).isoformat()} "
            f"(lead time {(to_utc(target_time) - current_time).total_seconds() / 86400:.2f} days)"
        )
        try:
            snapshot = provider.fetch_weather(location.latitude, location.longitude, target_time)
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError(f"{source.value} provider failed: {e}", upstream=source.value) from e

        self.cache.set(key, snapshot, current_time)
        return WeatherReport(snapshot, source, current_time)
