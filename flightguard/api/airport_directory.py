# airport_directory.py
#
#   AirportDB lookup by ICAO code, used to fill in missing runway headings.
#   404 means "no such airport" and is not an error.

import logging
import re
from typing import NamedTuple, Optional

import requests

from config.settings import AIRPORTDB_API_KEY, HTTP_TIMEOUT_SECONDS
from flightguard.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

AIRPORTDB_BASE_URL = "https://airportdb.io/api/v1"


class AirportInfo(NamedTuple):
    icao_code: str
    name: str
    latitude: float
    longitude: float
    runway_heading: Optional[float] = None


def normalize_icao(code: str) -> str:
    """Upper-case, and prefix 3-letter US codes with K (ORD -> KORD)."""
    code = (code or "").strip().upper()
    if re.fullmatch(r"[A-Z]{3}", code):
        code = f"K{code}"
    return code


def first_runway_heading(runways) -> Optional[float]:
    """High-end true heading of the first runway, falling back to its low end."""
    if not runways:
        return None
    runway = runways[0]
    for field in ("he_heading_degT", "le_heading_degT"):
        value = runway.get(field)
        if value not in (None, ""):
            try:
                return float(value)
            except (TypeError, ValueError):
                continue
    return None


class AirportDirectoryClient:

    def __init__(self, api_key=None, timeout=HTTP_TIMEOUT_SECONDS, base_url=AIRPORTDB_BASE_URL):
        self.api_key = api_key or AIRPORTDB_API_KEY
        if not self.api_key:
            raise ConfigurationError("AIRPORTDB_API_KEY is not set")
        self.timeout = timeout
        self.base_url = base_url

    def lookup(self, icao_code: str) -> Optional[AirportInfo]:
        """
        Returns:
            AirportInfo, or None if the directory does not know the code
        Raises:
            UpstreamError: request failed, timed out or returned an unusable payload
        """
        code = normalize_icao(icao_code)
        if not code:
            return None

        url = f"{self.base_url}/airport/{code}"
        try:
            response = requests.get(url, params={"apiToken": self.api_key}, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise UpstreamError(f"Airport directory timed out for {code}", upstream="airportdb") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Airport directory request failed for {code}: {type(e).__name__}",
                                upstream="airportdb") from e

        if response.status_code == 404:
            logger.info(f"Airport {code} not found in directory")
            return None
        if not response.ok:
            raise UpstreamError(f"Airport directory returned HTTP {response.status_code} for {code}",
                                upstream="airportdb")

        try:
            data = response.json()
            latitude = data.get("latitude_deg", data.get("latitude"))
            longitude = data.get("longitude_deg", data.get("longitude"))
            if latitude is None or longitude is None:
                raise ValueError("missing coordinates")
            return AirportInfo(
                icao_code=data.get("icao_code") or data.get("gps_code") or data.get("ident") or code,
                name=data.get("name") or data.get("municipality") or "Unknown Airport",
                latitude=float(latitude),
                longitude=float(longitude),
                runway_heading=first_runway_heading(data.get("runways")),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamError(f"Unusable airport directory payload for {code}: {e}",
                                upstream="airportdb") from e
