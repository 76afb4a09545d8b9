# testing/test_weather_check.py
"""
Tests for single-flight weather checks and the batch sweep:
- status/probability persistence and the weather log
- runway heading enrichment
- alerts only when a booking newly becomes AT_RISK
- per-booking failures don't stop the sweep
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from flightguard.api.weather_cache import WeatherCache
from flightguard.api.weather_check import SweepSummary, WeatherCheckService
from flightguard.api.weather_router import WeatherRouter
from flightguard.db import BookingStore
from flightguard.exceptions import ConflictError, NotFoundError, UpstreamError
from flightguard.models import BookingStatus, NotificationKind, RiskLevel, TrainingLevel, WeatherSource
from testing.mock_data import (
    INSTRUCTOR_ID,
    NOW,
    STUDENT_ID,
    FakeAirportDirectory,
    FakeClock,
    FakeNotifier,
    FakeProvider,
    make_booking,
    make_location,
    make_snapshot,
    seed_users,
)

LOW_VISIBILITY = make_snapshot(visibility=2)


@pytest.fixture
def store(tmp_path):
    store = BookingStore(str(tmp_path / "weather-check.db"))
    seed_users(store)
    return store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return FakeNotifier()


def make_service(store, clock, notifier=None, snapshot=None, fail_for=(), airport_directory=None):
    router = WeatherRouter(
        FakeProvider(WeatherSource.TOMORROW_IO, snapshot=snapshot, fail_for=fail_for),
        FakeProvider(WeatherSource.OPENWEATHER, snapshot=snapshot, fail_for=fail_for),
        cache=WeatherCache(),
        clock=clock,
    )
    return WeatherCheckService(store, router, notifier=notifier, airport_directory=airport_directory, clock=clock)


def private_booking(booking_id="booking-1", hours_ahead=24, **kwargs):
    kwargs.setdefault("location", make_location(runway_heading=0))
    return make_booking(booking_id, scheduled_date=NOW + timedelta(hours=hours_ahead),
                        training_level=TrainingLevel.PRIVATE, **kwargs)


def test_good_weather_keeps_booking_scheduled(store, clock, notifier):
    booking = store.create_booking(private_booking())
    result = make_service(store, clock, notifier).check_flight_weather(booking.id)

    assert result.booking.status == BookingStatus.SCHEDULED
    assert result.probability == 0
    assert result.risk_level == RiskLevel.LOW
    assert result.violations == []
    assert result.source == WeatherSource.TOMORROW_IO
    assert notifier.sent == []

    logs = store.get_weather_logs(booking.id)
    assert len(logs) == 1
    assert logs[0].checked_at == NOW


def test_bad_weather_flags_booking_and_alerts_both_people(store, clock, notifier):
    booking = store.create_booking(private_booking())
    result = make_service(store, clock, notifier, snapshot=LOW_VISIBILITY).check_flight_weather(booking.id)

    # 33.3 * 1.1 + 4
    assert result.probability == 41
    assert result.risk_level == RiskLevel.MODERATE
    assert result.newly_at_risk is True
    assert result.notifications_sent == 2

    stored = store.get_booking(booking.id)
    assert stored.status == BookingStatus.AT_RISK
    assert stored.cancellation_probability == 41
    assert stored.risk_level == RiskLevel.MODERATE

    assert [(k, r) for k, r, _ in notifier.sent] == [
        (NotificationKind.WEATHER_CONFLICT, STUDENT_ID),
        (NotificationKind.WEATHER_CONFLICT, INSTRUCTOR_ID),
    ]
    assert "Visibility 2.0 mi below minimum of 3 mi" in notifier.sent[0][2]["conflict_reason"]


def test_already_at_risk_booking_is_not_alerted_again(store, clock, notifier):
    booking = store.create_booking(private_booking())
    service = make_service(store, clock, notifier, snapshot=LOW_VISIBILITY)
    service.check_flight_weather(booking.id)
    notifier.sent.clear()

    result = service.check_flight_weather(booking.id)

    assert result.booking.status == BookingStatus.AT_RISK
    assert result.newly_at_risk is False
    assert notifier.sent == []
    assert len(store.get_weather_logs(booking.id)) == 2


def test_improving_weather_clears_at_risk(store, clock):
    booking = store.create_booking(private_booking(status=BookingStatus.AT_RISK))
    result = make_service(store, clock).check_flight_weather(booking.id)
    assert result.booking.status == BookingStatus.SCHEDULED


def test_failed_alert_does_not_undo_status(store, clock):
    booking = store.create_booking(private_booking())
    result = make_service(store, clock, FakeNotifier(succeed=False),
                          snapshot=LOW_VISIBILITY).check_flight_weather(booking.id)
    assert result.notifications_sent == 0
    assert store.get_booking(booking.id).status == BookingStatus.AT_RISK


def test_missing_runway_heading_is_looked_up_and_stored(store, clock):
    booking = store.create_booking(private_booking(location=make_location(icao_code="KEDC")))
    directory = FakeAirportDirectory({"KEDC": 130})

    result = make_service(store, clock, airport_directory=directory).check_flight_weather(booking.id)

    assert directory.lookups == ["KEDC"]
    assert result.booking.departure_location.runway_heading == 130
    assert store.get_booking(booking.id).departure_location.runway_heading == 130


def test_known_runway_heading_is_not_looked_up(store, clock):
    booking = store.create_booking(private_booking())
    directory = FakeAirportDirectory({"KEDC": 130})
    make_service(store, clock, airport_directory=directory).check_flight_weather(booking.id)
    assert directory.lookups == []


def test_directory_failure_is_not_fatal(store, clock):
    booking = store.create_booking(private_booking(location=make_location(icao_code="KEDC")))
    directory = FakeAirportDirectory(error=UpstreamError("airportdb down", upstream="airportdb"))

    result = make_service(store, clock, airport_directory=directory).check_flight_weather(booking.id)

    assert result.booking.departure_location.runway_heading is None
    # 5 kt assumed as crosswind and tailwind is within PRIVATE limits
    assert result.booking.status == BookingStatus.SCHEDULED


def test_weather_failure_propagates_for_single_check(store, clock):
    booking = store.create_booking(private_booking())
    with pytest.raises(UpstreamError):
        make_service(store, clock, fail_for=True).check_flight_weather(booking.id)
    assert store.get_weather_logs(booking.id) == []


def test_unknown_booking(store, clock):
    with pytest.raises(NotFoundError):
        make_service(store, clock).check_flight_weather("missing")


def test_concurrent_change_during_check_is_a_conflict(store, clock):
    booking = store.create_booking(private_booking())

    class ConcurrentEditProvider(FakeProvider):
        def fetch_weather(self, lat, lon, target_time):
            # someone edits the booking while the forecast is in flight
            store.update_departure_location(booking.id, make_location(runway_heading=90))
            return super().fetch_weather(lat, lon, target_time)

    router = WeatherRouter(ConcurrentEditProvider(WeatherSource.TOMORROW_IO),
                           FakeProvider(WeatherSource.OPENWEATHER), clock=clock)
    service = WeatherCheckService(store, router, clock=clock)

    with pytest.raises(ConflictError):
        service.check_flight_weather(booking.id)
    assert store.get_weather_logs(booking.id) == []


def test_sweep_covers_48_hours_and_survives_failures(store, clock, notifier):
    store.create_booking(private_booking("ok", hours_ahead=6))
    store.create_booking(private_booking("broken", hours_ahead=12))
    store.create_booking(private_booking("flagged", hours_ahead=40, status=BookingStatus.AT_RISK))
    store.create_booking(private_booking("cancelled", hours_ahead=8, status=BookingStatus.CANCELLED))
    store.create_booking(private_booking("next-week", hours_ahead=24 * 5))

    service = make_service(store, clock, notifier, fail_for=(NOW + timedelta(hours=12),))
    summary = service.run_scheduled_sweep()

    assert summary.checked == 2
    assert summary.at_risk == 0
    assert [e["bookingId"] for e in summary.errors] == ["broken"]
    assert summary.notifications_sent == 0
    assert summary.elapsed >= 0

    assert store.get_booking("flagged").status == BookingStatus.SCHEDULED
    assert store.get_weather_logs("cancelled") == []
    assert store.get_weather_logs("next-week") == []


def test_check_all_uses_seven_day_horizon(store, clock, notifier):
    store.create_booking(private_booking("tomorrow", hours_ahead=24))
    store.create_booking(private_booking("next-week", hours_ahead=24 * 5))
    store.create_booking(private_booking("too-far", hours_ahead=24 * 8))

    summary = make_service(store, clock, notifier, snapshot=LOW_VISIBILITY).check_upcoming_flights()

    assert summary.checked == 2
    assert summary.at_risk == 2
    assert summary.notifications_sent == 4
    assert store.get_booking("too-far").status == BookingStatus.SCHEDULED


def test_summary_as_dict():
    summary = SweepSummary(checked=3, at_risk=1, errors=[{"bookingId": "b", "error": "x"}],
                           notifications_sent=2, elapsed=0.12345)
    assert summary.as_dict() == {
        "checked": 3,
        "atRisk": 1,
        "errors": [{"bookingId": "b", "error": "x"}],
        "notificationsSent": 2,
        "elapsedSeconds": 0.123,
    }


def test_handler_returns_summary():
    import main

    services = MagicMock()
    services.weather_check.run_scheduled_sweep.return_value = SweepSummary(checked=4, at_risk=1)
    with patch("main.build_services", return_value=services) as build, patch("main.setup_logging"):
        response = main.handler({}, None)

    build.assert_called_once_with(with_workflow=False)
    assert response["statusCode"] == 200
    assert '"checked": 4' in response["body"]


def test_handler_reports_fatal_errors():
    import main

    with patch("main.build_services", side_effect=RuntimeError("database locked")), patch("main.setup_logging"):
        response = main.handler()

    assert response["statusCode"] == 500
    assert "database locked" in response["body"]
