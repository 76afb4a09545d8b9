# flightguard/api/rescheduler.py
#
# Builds reschedule options for a flight flagged AT_RISK:
# 1. Samples up to 5 dates 1-7 days after the original slot (future only)
# 2. Fetches and evaluates the forecast for each of them
# 3. Asks the generative assistant for 3 alternatives
# 4. Keeps the suggestions that pass the schema, the 7 day horizon and the
#    instructor's calendar
# Nothing is written here; accepting an option is the workflow's job.

import json
import logging
from datetime import datetime, timedelta
from typing import Callable, List

from pydantic import ValidationError as SchemaValidationError

from config.settings import UNKNOWN_RUNWAY_POLICY
from flightguard.api.scheduler import RESCHEDULE_HORIZON, find_conflicts, within_horizon
from flightguard.api.weather_validation import evaluate_weather_safety
from flightguard.exceptions import (
    ConflictError,
    InsufficientOptionsError,
    UpstreamError,
    ValidationError,
)
from flightguard.minimums import minimums_for
from flightguard.models import Booking, RescheduleOption, RescheduleResponse
from flightguard.timezone_utils import DEFAULT_TIMEZONE, format_flight_time, now as utc_now

logger = logging.getLogger(__name__)

REQUIRED_OPTIONS = 3
MAX_CANDIDATE_DATES = 5
CANDIDATE_OFFSET_DAYS = range(1, 8)


class RescheduleOptionGenerator:
    """
    Args:
        weather_router: WeatherRouter used for every candidate forecast
        assistant: anything with complete(prompt: dict) -> str
        store: BookingStore, read only (instructor calendar)
        clock: returns the current UTC time
    """

    def __init__(self, weather_router, assistant, store, clock: Callable[[], datetime] = utc_now,
                 max_candidates=MAX_CANDIDATE_DATES, horizon=RESCHEDULE_HORIZON,
                 required_options=REQUIRED_OPTIONS, unknown_runway_policy=UNKNOWN_RUNWAY_POLICY,
                 timezone=DEFAULT_TIMEZONE):
        self.weather_router = weather_router
        self.assistant = assistant
        self.store = store
        self.clock = clock
        self.max_candidates = max_candidates
        self.horizon = horizon
        self.required_options = required_options
        self.unknown_runway_policy = unknown_runway_policy
        self.timezone = timezone

    def candidate_dates(self, booking: Booking, current_time: datetime = None) -> List[datetime]:
        """Same time of day, 1 to 7 days after the original slot, future only."""
        current_time = current_time or self.clock()
        dates = []
        for days in CANDIDATE_OFFSET_DAYS:
            date = booking.scheduled_date + timedelta(days=days)
            if date > current_time:
                dates.append(date)
        return dates[:self.max_candidates]

    def collect_forecasts(self, booking: Booking, dates: List[datetime]) -> List[dict]:
        """
        Forecast and verdict per candidate date. A failed fetch drops that date.
        Raises:
            UpstreamError: every fetch failed
        """
        minimums = minimums_for(booking.training_level)
        location = booking.departure_location
        forecasts = []
        failures = 0

        for date in dates:
            try:
                report = self.weather_router.get_weather(location, date)
            except UpstreamError as e:
                failures += 1
                logger.warning(f"Skipping candidate {date.isoformat()} for booking {booking.id}: {e}")
                continue

            evaluation = evaluate_weather_safety(
                report.snapshot, minimums, location.runway_heading, self.unknown_runway_policy
            )
            forecasts.append({"date": date, "report": report, "evaluation": evaluation})

        if dates and failures == len(dates):
            raise UpstreamError(f"No forecast available for any candidate date of booking {booking.id}")
        return forecasts

    def build_prompt(self, booking: Booking, forecasts: List[dict]) -> dict:
        minimums = minimums_for(booking.training_level)
        location = booking.departure_location
        level = booking.training_level.value

        return {
            "task": (
                "A flight lesson has been flagged AT_RISK because of weather. Suggest "
                f"exactly {self.required_options} alternative slots within the next "
                f"{self.horizon.days} days that are safe for a {level} pilot."
            ),
            "originalBooking": {
                "scheduledDate": booking.scheduled_date.isoformat(),
                "localTime": format_flight_time(booking.scheduled_date, self.timezone),
                "duration": booking.duration,
                "trainingLevel": level,
                "location": location.to_dict(),
            },
            "minimums": minimums.to_dict(),
            "candidateForecasts": [
                {
                    "date": f["date"].isoformat(),
                    "localTime": format_flight_time(f["date"], self.timezone),
                    "weather": f["report"].snapshot.to_dict(),
                    "meetsMinimums": f["evaluation"].is_safe,
                    "violations": f["evaluation"].violations,
                    "severityScore": round(f["evaluation"].severity_score, 1),
                }
                for f in forecasts
            ],
            "requirements": [
                f"Generate exactly {self.required_options} reschedule options",
                f"Each option must start within the next {self.horizon.days} days from now",
                f"Each option must meet the weather minimums for a {level} pilot",
                "Prefer dates and times similar to the original schedule",
                "Provide clear reasoning and a confidence score (0-100) for each option",
                f"Keep the duration at {booking.duration} hours unless there is a reason not to",
            ],
            "currentTime": self.clock().isoformat(),
            "responseSchema": RescheduleResponse.model_json_schema(by_alias=True),
        }

    def parse_options(self, text: str) -> List[RescheduleOption]:
        """
        Validate the assistant's reply. Bad candidates are dropped one by one.
        Raises:
            ValidationError: not a JSON object with an options array, or no candidate passed
        """
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Assistant reply is not valid JSON: {e}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("options"), list):
            raise ValidationError("Assistant reply must be a JSON object with an 'options' array")

        options = []
        for index, raw in enumerate(payload["options"]):
            try:
                options.append(RescheduleOption.model_validate(raw))
            except SchemaValidationError as e:
                logger.warning(f"Discarding assistant option {index}: {e.error_count()} schema error(s)")

        if not options:
            raise ValidationError("No assistant option matched the reschedule option schema")

        note = payload.get("analysisNote")
        if note:
            logger.debug(f"Assistant analysis: {note}")
        return options

    def validate_option(self, option: RescheduleOption, booking: Booking, current_time: datetime = None):
        """
        Raises:
            ValidationError: slot is in the past or beyond the horizon
            ConflictError: slot overlaps another active booking of the instructor
        """
        current_time = current_time or self.clock()
        if not within_horizon(option.suggested_date, current_time, self.horizon):
            raise ValidationError(
                f"Suggested date {option.suggested_date.isoformat()} must be in the future "
                f"and within {self.horizon.days} days"
            )

        duration = timedelta(hours=option.suggested_duration)
        nearby = self.store.find_instructor_bookings_near(
            booking.instructor_id, option.suggested_date, option.end_date, exclude_booking_id=booking.id
        )
        conflicts = find_conflicts(option.suggested_date, duration, nearby)
        if conflicts:
            raise ConflictError(
                f"Instructor {booking.instructor_id} is already booked at "
                f"{option.suggested_date.isoformat()} (booking {conflicts[0].id})"
            )

    def filter_options(self, options: List[RescheduleOption], booking: Booking,
                       current_time: datetime = None) -> List[RescheduleOption]:
        current_time = current_time or self.clock()
        kept = []
        for option in options:
            try:
                self.validate_option(option, booking, current_time)
            except (ValidationError, ConflictError) as e:
                logger.warning(f"Option rejected for booking {booking.id}: {e}")
                continue
            kept.append(option)
        return kept

    def generate_options(self, booking: Booking) -> List[RescheduleOption]:
        """
        Returns:
            exactly `required_options` validated options
        Raises:
            UpstreamError: no forecast could be fetched, or the assistant failed
            ValidationError: the assistant's reply was unusable
            InsufficientOptionsError: too few options survived filtering
        """
        current_time = self.clock()
        dates = self.candidate_dates(booking, current_time)
        forecasts = self.collect_forecasts(booking, dates)
        logger.info(f"Requesting reschedule options for booking {booking.id} "
                    f"({len(forecasts)} candidate forecasts)")

        prompt = self.build_prompt(booking, forecasts)
        options = self.parse_options(self.assistant.complete(prompt))
        valid = self.filter_options(options, booking, current_time)

        if len(valid) < self.required_options:
            raise InsufficientOptionsError(
                f"Only {len(valid)} valid options generated for booking {booking.id}, "
                f"need {self.required_options}",
                valid_count=len(valid),
                required=self.required_options,
            )
        return valid[:self.required_options]
