# flightguard/api/weather_check.py
#
# Per-booking weather check and the batch sweep built on top of it.
#
# For each booking: fill in a missing runway heading (best effort), fetch the
# forecast, evaluate it, score it, then store status/probability/risk and the
# weather log in one version-checked write. A booking that just turned AT_RISK
# triggers a weather alert to its student and instructor.

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, NamedTuple

from config.settings import CHECK_ALL_HORIZON_DAYS, SWEEP_HORIZON_HOURS, UNKNOWN_RUNWAY_POLICY
from flightguard.api.cancellation import booking_status_for, calculate_cancellation_probability
from flightguard.api.notifier import flight_url
from flightguard.api.weather_validation import evaluate_weather_safety
from flightguard.minimums import minimums_for
from flightguard.models import (
    Booking,
    BookingStatus,
    NotificationKind,
    RiskLevel,
    WeatherCheckLog,
    WeatherSnapshot,
    WeatherSource,
)
from flightguard.timezone_utils import DEFAULT_TIMEZONE, format_flight_time, now as utc_now

logger = logging.getLogger(__name__)


class FlightWeatherResult(NamedTuple):
    booking: Booking
    weather: WeatherSnapshot
    source: WeatherSource
    probability: int
    risk_level: RiskLevel
    violations: List[str]
    reasons: List[str]
    newly_at_risk: bool = False
    notifications_sent: int = 0


@dataclass
class SweepSummary:
    checked: int = 0
    at_risk: int = 0
    errors: List[dict] = field(default_factory=list)
    notifications_sent: int = 0
    elapsed: float = 0.0  # seconds

    def as_dict(self):
        return {
            "checked": self.checked,
            "atRisk": self.at_risk,
            "errors": list(self.errors),
            "notificationsSent": self.notifications_sent,
            "elapsedSeconds": round(self.elapsed, 3),
        }


class WeatherCheckService:
    """
    Args:
        store: BookingStore
        weather_router: WeatherRouter
        notifier: anything with send(kind, recipient, payload); optional
        airport_directory: AirportDirectoryClient used to fill runway headings; optional
        clock: returns the current UTC time
    """

    def __init__(self, store, weather_router, notifier=None, airport_directory=None,
                 clock: Callable[[], datetime] = utc_now, unknown_runway_policy=UNKNOWN_RUNWAY_POLICY,
                 timezone=DEFAULT_TIMEZONE):
        self.store = store
        self.weather_router = weather_router
        self.notifier = notifier
        self.airport_directory = airport_directory
        self.clock = clock
        self.unknown_runway_policy = unknown_runway_policy
        self.timezone = timezone

    def ensure_runway_heading(self, booking: Booking) -> Booking:
        """
        Look up and store the departure runway heading if it's missing.
        Never raises; on any failure the booking is returned unchanged.
        """
        location = booking.departure_location
        if location.runway_heading is not None or not location.icao_code or self.airport_directory is None:
            return booking

        try:
            airport = self.airport_directory.lookup(location.icao_code)
            if airport is None or airport.runway_heading is None:
                logger.info(f"No runway heading found for {location.icao_code}")
                return booking
            updated = self.store.update_departure_location(
                booking.id, location.with_runway_heading(airport.runway_heading)
            )
            logger.info(f"Runway heading {airport.runway_heading:g} stored for {location.icao_code} "
                        f"(booking {booking.id})")
            return updated
        except Exception as e:
            logger.warning(f"Failed to fetch runway heading for {location.icao_code}: {e}")
            return booking

    def check_flight_weather(self, booking_id: str) -> FlightWeatherResult:
        """
        Check one booking now. Errors propagate.
        Raises:
            NotFoundError, UpstreamError, ConflictError (booking changed mid-check)
        """
        booking = self.store.get_booking(booking_id)
        return self._check_booking(booking)

    def _check_booking(self, booking: Booking) -> FlightWeatherResult:
        booking = self.ensure_runway_heading(booking)
        location = booking.departure_location

        report = self.weather_router.get_weather(location, booking.scheduled_date)
        evaluation = evaluate_weather_safety(
            report.snapshot,
            minimums_for(booking.training_level),
            location.runway_heading,
            self.unknown_runway_policy,
        )
        assessment = calculate_cancellation_probability(evaluation, booking.training_level)
        status = booking_status_for(assessment)

        log = WeatherCheckLog(
            booking_id=booking.id,
            weather=report.snapshot,
            source=report.source,
            probability=assessment.probability,
            risk_level=assessment.risk_level,
            violations=evaluation.violations,
            reasons=assessment.reasons,
            checked_at=self.clock(),
        )
        previous_status = booking.status
        updated = self.store.apply_weather_check(
            booking.id, booking.version, status, assessment.probability, assessment.risk_level, log
        )
        logger.info(f"Booking {booking.id}: {status.value}, {assessment.probability}% "
                    f"({assessment.risk_level.value}) via {report.source.value}")

        newly_at_risk = status == BookingStatus.AT_RISK and previous_status != BookingStatus.AT_RISK
        sent = 0
        if newly_at_risk:
            sent = self._send_weather_alerts(updated, evaluation.violations, assessment)

        return FlightWeatherResult(
            booking=updated,
            weather=report.snapshot,
            source=report.source,
            probability=assessment.probability,
            risk_level=assessment.risk_level,
            violations=evaluation.violations,
            reasons=assessment.reasons,
            newly_at_risk=newly_at_risk,
            notifications_sent=sent,
        )

    def check_upcoming_flights(self, horizon: timedelta = timedelta(days=CHECK_ALL_HORIZON_DAYS)) -> SweepSummary:
        """
        Check every SCHEDULED or AT_RISK booking starting between now and now + horizon.
        A failing booking is recorded in the summary and the sweep moves on.
        """
        started = time.monotonic()
        current_time = self.clock()
        bookings = self.store.list_bookings_for_weather_check(current_time, current_time + horizon)
        logger.info(f"Weather sweep: {len(bookings)} bookings within {horizon}")

        summary = SweepSummary()
        for booking in bookings:
            try:
                result = self._check_booking(booking)
            except Exception as e:
                logger.error(f"Weather check failed for booking {booking.id}: {type(e).__name__}: {e}")
                summary.errors.append({"bookingId": booking.id, "error": str(e)})
                continue
            summary.checked += 1
            if result.booking.status == BookingStatus.AT_RISK:
                summary.at_risk += 1
            summary.notifications_sent += result.notifications_sent

        summary.elapsed = time.monotonic() - started
        logger.info(f"Weather sweep finished: {summary.checked} checked, {summary.at_risk} at risk, "
                    f"{len(summary.errors)} errors in {summary.elapsed:.2f}s")
        return summary

    def run_scheduled_sweep(self) -> SweepSummary:
        """The periodic job: the next SWEEP_HORIZON_HOURS hours."""
        return self.check_upcoming_flights(horizon=timedelta(hours=SWEEP_HORIZON_HOURS))

    def _send_weather_alerts(self, booking: Booking, violations: List[str], assessment) -> int:
        if self.notifier is None:
            return 0

        payload = {
            "flight_date": format_flight_time(booking.scheduled_date, self.timezone),
            "departure": booking.departure_location.name,
            "conflict_reason": ", ".join(violations) or ", ".join(assessment.reasons)
            or "Weather conditions may prevent safe flight",
            "probability": assessment.probability,
            "risk_level": assessment.risk_level.value,
            "view_url": flight_url(booking.id),
        }
        sent = 0
        for user_id in (booking.student_id, booking.instructor_id):
            try:
                recipient = self.store.get_user(user_id)
                result = self.notifier.send(NotificationKind.WEATHER_CONFLICT, recipient, payload)
            except Exception as e:
                logger.error(f"Weather alert to user {user_id} failed: {e}")
                continue
            if result is not None and result.success:
                sent += 1
        return sent
