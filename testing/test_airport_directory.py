# testing/test_airport_directory.py
"""
Tests for the airport directory client (runway heading lookup).
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from flightguard.api.airport_directory import AirportDirectoryClient, normalize_icao
from flightguard.exceptions import ConfigurationError, UpstreamError


def airport_response(payload=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = payload
    return response


AIRPORT = {
    "ident": "KAUS",
    "icao_code": "KAUS",
    "name": "Austin Bergstrom International Airport",
    "latitude_deg": "30.197535",
    "longitude_deg": "-97.662015",
    "runways": [{"le_ident": "17L", "le_heading_degT": "174", "he_ident": "35R", "he_heading_degT": "354"}],
}


def test_normalize_icao():
    assert normalize_icao("aus") == "KAUS"
    assert normalize_icao(" kaus ") == "KAUS"
    assert normalize_icao("EGLL") == "EGLL"


@patch("flightguard.api.airport_directory.requests.get")
def test_lookup_reads_first_runway_heading(mock_get):
    mock_get.return_value = airport_response(AIRPORT)
    info = AirportDirectoryClient(api_key="adb").lookup("aus")

    assert info.icao_code == "KAUS"
    assert info.runway_heading == 354
    assert info.latitude == pytest.approx(30.197535)
    assert mock_get.call_args.args[0].endswith("/airport/KAUS")
    assert mock_get.call_args.kwargs["params"] == {"apiToken": "adb"}


@patch("flightguard.api.airport_directory.requests.get")
def test_lookup_falls_back_to_low_end_heading(mock_get):
    payload = dict(AIRPORT, runways=[{"le_heading_degT": "174", "he_heading_degT": None}])
    mock_get.return_value = airport_response(payload)
    assert AirportDirectoryClient(api_key="adb").lookup("KAUS").runway_heading == 174


@patch("flightguard.api.airport_directory.requests.get")
def test_lookup_without_runways(mock_get):
    mock_get.return_value = airport_response(dict(AIRPORT, runways=[]))
    assert AirportDirectoryClient(api_key="adb").lookup("KAUS").runway_heading is None


@patch("flightguard.api.airport_directory.requests.get")
def test_unknown_airport_returns_none(mock_get):
    mock_get.return_value = airport_response({"message": "not found"}, status_code=404)
    assert AirportDirectoryClient(api_key="adb").lookup("ZZZZ") is None


@patch("flightguard.api.airport_directory.requests.get")
def test_directory_errors_raise_upstream_error(mock_get):
    mock_get.return_value = airport_response({}, status_code=500)
    with pytest.raises(UpstreamError):
        AirportDirectoryClient(api_key="adb").lookup("KAUS")

    mock_get.side_effect = requests.Timeout()
    with pytest.raises(UpstreamError):
        AirportDirectoryClient(api_key="adb").lookup("KAUS")


def test_directory_requires_api_key():
    with patch("flightguard.api.airport_directory.AIRPORTDB_API_KEY", None):
        with pytest.raises(ConfigurationError):
            AirportDirectoryClient()
