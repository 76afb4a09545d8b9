# weather.py
#
#   Weather providers used by the weather router:
#   - Tomorrow.io timelines API: hourly, aviation-friendly fields (cloud base)
#   - OpenWeather 5 day / 3 hour forecast: longer range, general forecast
#   Both return a WeatherSnapshot in aviation units (kt, statute miles, ft AGL, °F)

import logging
from datetime import datetime, timedelta, timezone

import requests

from config.settings import HTTP_TIMEOUT_SECONDS, OPENWEATHER_API_KEY, TOMORROW_IO_API_KEY
from flightguard.exceptions import ConfigurationError, UpstreamError
from flightguard.models import WeatherSnapshot, WeatherSource
from flightguard.timezone_utils import parse_iso_with_tz, to_utc

logger = logging.getLogger(__name__)

MS_TO_KNOTS = 1.944
KM_TO_MILES = 0.621371
METERS_TO_MILES = 0.000621371
KM_TO_FEET = 3280.84

TOMORROW_WEATHER_CODES = {
    1000: "Clear",
    1100: "Mostly Clear",
    1101: "Partly Cloudy",
    1102: "Mostly Cloudy",
    1001: "Cloudy",
    2000: "Fog",
    2100: "Light Fog",
    4000: "Drizzle",
    4001: "Rain",
    4200: "Light Rain",
    4201: "Heavy Rain",
    5000: "Snow",
    5001: "Flurries",
    5100: "Light Snow",
    5101: "Heavy Snow",
    6000: "Freezing Drizzle",
    6001: "Freezing Rain",
    6200: "Light Freezing Rain",
    6201: "Heavy Freezing Rain",
    7000: "Ice Pellets",
    7101: "Heavy Ice Pellets",
    7102: "Light Ice Pellets",
    8000: "Thunderstorm",
}

TOMORROW_PRECIPITATION_TYPES = {
    1: "rain",
    2: "snow",
    3: "freezing rain",
    4: "ice pellets",
}

TOMORROW_FIELDS = [
    "temperature",
    "windSpeed",
    "windDirection",
    "windGust",
    "visibility",
    "cloudCover",
    "cloudBase",
    "precipitationIntensity",
    "precipitationType",
    "weatherCode",
]


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9 / 5 + 32


def estimate_ceiling(cloud_cover: float) -> float:
    """
    Rough ceiling estimate when the provider reports no cloud base.
    Lower cloud cover means a higher ceiling.
    """
    if cloud_cover < 50:
        return 5000
    if cloud_cover < 80:
        return 2000
    return 1000


def _get_json(url, params, source: WeatherSource, timeout):
    """
    GET a provider endpoint and decode JSON, turning every failure into UpstreamError.
    Exception text from requests can contain the query string (and the API key),
    so only the exception type is reported.
    """
    try:
        response = requests.get(url, params=params, timeout=timeout)
    except requests.Timeout as e:
        raise UpstreamError(f"{source.value} timed out after {timeout}s", upstream=source.value) from e
    except requests.RequestException as e:
        raise UpstreamError(f"{source.value} request failed ({type(e).__name__})", upstream=source.value) from e

    if not response.ok:
        raise UpstreamError(
            f"{source.value} API error: {response.status_code} {response.reason}",
            upstream=source.value,
        )

    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(f"{source.value} returned a non-JSON body", upstream=source.value) from e


class TomorrowClient:
    """
    Tomorrow.io timelines client. Detailed short-range forecast, used for
    flights less than 4 days out.
    """

    BASE_URL = "https://api.tomorrow.io/v4/timelines"
    source = WeatherSource.TOMORROW_IO

    def __init__(self, api_key: str = None, timeout: float = HTTP_TIMEOUT_SECONDS, base_url: str = BASE_URL):
        self.api_key = api_key or TOMORROW_IO_API_KEY
        if not self.api_key:
            raise ConfigurationError("TOMORROW_IO_API_KEY is not configured")
        self.timeout = timeout
        self.base_url = base_url

    def fetch_weather(self, lat: float, lon: float, target_time: datetime) -> WeatherSnapshot:
        """
        Fetch the hourly interval closest to target_time.
        Args:
            lat (float): Latitude.
            lon (float): Longitude.
            target_time (datetime): Time of the flight.
        Returns:
            WeatherSnapshot
        Raises:
            UpstreamError: request failed, timed out, or the payload is unusable
        """
        target = to_utc(target_time)
        params = {
            "location": f"{lat},{lon}",
            "fields": ",".join(TOMORROW_FIELDS),
            "timesteps": "1h",
            "startTime": target.isoformat(),
            "endTime": (target + timedelta(hours=2)).isoformat(),
            "units": "metric",
            "apikey": self.api_key,
        }
        logger.debug(f"Tomorrow.io request for {lat},{lon} at {target.isoformat()}")
        data = _get_json(self.base_url, params, self.source, self.timeout)

        # some errors come back with a 200 status
        if isinstance(data, dict) and (data.get("code") or data.get("type") == "error" or data.get("error")):
            message = data.get("message") or data.get("error") or "unknown error"
            raise UpstreamError(f"Tomorrow.io API error: {message}", upstream=self.source.value)

        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            timelines = data["data"].get("timelines") or []
        elif isinstance(data, dict):
            timelines = data.get("timelines") or []
        else:
            timelines = []

        if not timelines:
            raise UpstreamError("Tomorrow.io returned no forecast timelines", upstream=self.source.value)

        intervals = timelines[0].get("intervals") or []
        if not intervals:
            raise UpstreamError("Tomorrow.io returned no intervals for the requested time", upstream=self.source.value)

        try:
            closest = min(intervals, key=lambda item: abs(parse_iso_with_tz(item["time"]) - target))
            return self._to_snapshot(closest)
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Tomorrow.io response has an unexpected format: {e}", upstream=self.source.value) from e

    def _to_snapshot(self, item) -> WeatherSnapshot:
        values = item["values"]
        cloud_cover = values.get("cloudCover") or 0

        cloud_base = values.get("cloudBase")
        if cloud_base is not None and cloud_base > 0:
            ceiling = cloud_base * KM_TO_FEET
        else:
            ceiling = estimate_ceiling(cloud_cover)

        gust = values.get("windGust")
        conditions = TOMORROW_WEATHER_CODES.get(values.get("weatherCode"), "Unknown")

        return WeatherSnapshot(
            temperature=celsius_to_fahrenheit(values["temperature"]),
            wind_speed=values["windSpeed"] * MS_TO_KNOTS,
            wind_direction=values.get("windDirection"),
            wind_gusts=gust * MS_TO_KNOTS if gust is not None else None,
            visibility=values["visibility"] * KM_TO_MILES,
            cloud_cover=cloud_cover,
            ceiling=ceiling,
            precipitation_type=TOMORROW_PRECIPITATION_TYPES.get(values.get("precipitationType")),
            precipitation_intensity=values.get("precipitationIntensity"),
            conditions=conditions,
            description=conditions.lower(),
            timestamp=parse_iso_with_tz(item["time"]),
            source=self.source,
        )


class OpenWeatherClient:
    """
    OpenWeather 5 day / 3 hour forecast client. Used for flights 4+ days out.
    OpenWeather reports no cloud base, so ceiling is left unknown.
    """

    BASE_URL = "https://api.openweathermap.org/data/2.5"
    source = WeatherSource.OPENWEATHER

    def __init__(self, api_key: str = None, timeout: float = HTTP_TIMEOUT_SECONDS, base_url: str = BASE_URL):
        self.api_key = api_key or OPENWEATHER_API_KEY
        if not self.api_key:
            raise ConfigurationError("OPENWEATHER_API_KEY is not configured")
        self.timeout = timeout
        self.base_url = base_url

    def fetch_weather(self, lat: float, lon: float, target_time: datetime) -> WeatherSnapshot:
        """
        Fetch the forecast entry closest to target_time.
        Raises:
            UpstreamError: request failed, timed out, or the payload is unusable
        """
        target = to_utc(target_time)
        params = {"lat": lat, "lon": lon, "appid": self.api_key, "units": "metric"}
        logger.debug(f"OpenWeather request for {lat},{lon} at {target.isoformat()}")
        data = _get_json(f"{self.base_url}/forecast", params, self.source, self.timeout)

        items = data.get("list") if isinstance(data, dict) else None
        if not items:
            message = data.get("message") if isinstance(data, dict) else None
            raise UpstreamError(f"OpenWeather returned no forecast entries: {message or 'empty list'}",
                                upstream=self.source.value)

        target_ts = target.timestamp()
        try:
            closest = min(items, key=lambda item: abs(item["dt"] - target_ts))
            return self._to_snapshot(closest)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise UpstreamError(f"OpenWeather response has an unexpected format: {e}", upstream=self.source.value) from e

    def _to_snapshot(self, item) -> WeatherSnapshot:
        wind = item["wind"]
        gust = wind.get("gust")
        weather = item["weather"][0]

        precipitation_type = None
        precipitation_intensity = None
        for kind in ("rain", "snow"):
            if item.get(kind):
                precipitation_type = kind
                # mm over the 3h step
                precipitation_intensity = item[kind].get("3h")
                break

        return WeatherSnapshot(
            temperature=celsius_to_fahrenheit(item["main"]["temp"]),
            wind_speed=wind["speed"] * MS_TO_KNOTS,
            wind_direction=wind.get("deg"),
            wind_gusts=gust * MS_TO_KNOTS if gust is not None else None,
            # 10 km is the maximum OpenWeather reports and it omits the field in clear air
            visibility=item.get("visibility", 10000) * METERS_TO_MILES,
            cloud_cover=item.get("clouds", {}).get("all", 0),
            ceiling=None,
            precipitation_type=precipitation_type,
            precipitation_intensity=precipitation_intensity,
            conditions=weather["main"],
            description=weather.get("description", ""),
            timestamp=datetime.fromtimestamp(item["dt"], tz=timezone.utc),
            source=self.source,
        )
