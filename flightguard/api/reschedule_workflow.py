# flightguard/api/reschedule_workflow.py
#
# Reschedule lifecycle for a booking:
#
#   AT_RISK booking --generate_options--> 3 options (nothing stored)
#       --accept_option (student)--> request PENDING_INSTRUCTOR
#       --respond_to_reschedule (instructor/admin)--> APPROVED | REJECTED
#
# Approval creates the new booking and retires the original in one store
# transaction. Notifications go out after the state change and never undo it.

import logging
import uuid
from datetime import datetime
from typing import Callable, List, NamedTuple, Optional

from pydantic import ValidationError as SchemaValidationError

from flightguard.api.notifier import flight_url
from flightguard.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    ValidationError,
)
from flightguard.models import (
    Actor,
    Booking,
    BookingStatus,
    NotificationKind,
    RescheduleOption,
    RescheduleRequest,
    RescheduleStatus,
    Role,
)
from flightguard.timezone_utils import DEFAULT_TIMEZONE, format_flight_time, now as utc_now

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Rejected by instructor"

# a booking in one of these can't be moved anymore
CLOSED_BOOKING_STATUSES = (BookingStatus.CANCELLED, BookingStatus.RESCHEDULED, BookingStatus.COMPLETED)


class RescheduleOutcome(NamedTuple):
    request: RescheduleRequest
    new_booking: Optional[Booking] = None


class RescheduleWorkflow:
    """
    Args:
        store: BookingStore
        option_generator: RescheduleOptionGenerator
        notifier: EmailNotifier or anything with send(kind, recipient, payload); optional
        clock: returns the current UTC time
    """

    def __init__(self, store, option_generator, notifier=None, clock: Callable[[], datetime] = utc_now,
                 timezone=DEFAULT_TIMEZONE):
        self.store = store
        self.option_generator = option_generator
        self.notifier = notifier
        self.clock = clock
        self.timezone = timezone

    def generate_options(self, booking_id: str, actor: Actor) -> List[RescheduleOption]:
        """
        Raises:
            NotFoundError, AuthorizationError, InvalidStateError (booking not AT_RISK),
            plus whatever the option generator raises
        """
        booking = self.store.get_booking(booking_id)
        if not (actor.is_admin or booking.involves(actor.user_id)):
            raise AuthorizationError(f"User {actor.user_id} is not part of booking {booking_id}")
        if booking.status != BookingStatus.AT_RISK:
            raise InvalidStateError(
                f"Reschedule options can only be generated for flights at risk "
                f"(booking {booking_id} is {booking.status.value})"
            )
        return self.option_generator.generate_options(booking)

    def accept_option(self, booking_id: str, option, actor: Actor) -> RescheduleRequest:
        """
        Student picks one of the options; creates a request awaiting the instructor.

        Args:
            option: RescheduleOption or its JSON dict form
        Raises:
            ValidationError: option fails the schema or the horizon
            ConflictError: instructor is busy then, or a request is already open
            InvalidStateError: booking is cancelled, completed or already rescheduled
        """
        option = self._coerce_option(option)
        booking = self.store.get_booking(booking_id)

        if actor.user_id != booking.student_id:
            raise AuthorizationError(f"Only the booking's student can accept an option for booking {booking_id}")
        if booking.status in CLOSED_BOOKING_STATUSES:
            raise InvalidStateError(f"Booking {booking_id} is {booking.status.value} and can't be rescheduled")
        if self.store.get_open_request(booking_id) is not None:
            raise ConflictError(f"A reschedule request is already pending for booking {booking_id}")

        current_time = self.clock()
        self.option_generator.validate_option(option, booking, current_time)

        forecast = option.weather_summary.model_dump(by_alias=True, exclude_none=True)
        forecast["confidenceScore"] = option.confidence_score
        request = RescheduleRequest(
            id=uuid.uuid4().hex,
            original_booking_id=booking.id,
            proposed_date=option.suggested_date,
            proposed_duration=option.suggested_duration,
            ai_reasoning=option.reasoning,
            status=RescheduleStatus.PENDING_INSTRUCTOR,
            weather_forecast=forecast,
            student_confirmed_at=current_time,
            created_at=current_time,
        )
        # the unique index still catches a concurrent accept that slipped past the check above
        request = self.store.create_reschedule_request(request)
        logger.info(f"Reschedule request {request.id} created for booking {booking.id}")

        student = self._user(booking.student_id)
        self._notify(NotificationKind.RESCHEDULE_REQUEST, booking.instructor_id, {
            "student_name": student.name if student else None,
            "flight_date": format_flight_time(booking.scheduled_date, self.timezone),
            "new_date": format_flight_time(request.proposed_date, self.timezone),
            "reasoning": request.ai_reasoning,
            "view_url": flight_url(booking.id),
        })
        return request

    def respond_to_reschedule(self, request_id: str, approved: bool, actor: Actor,
                              reason: str = None) -> RescheduleOutcome:
        """
        Instructor (or admin) approves or rejects a pending request.
        Raises:
            AuthorizationError: actor is not the booking's instructor or an admin
            InvalidStateError: request is not PENDING_INSTRUCTOR, or the booking was closed meanwhile
            ConflictError: the instructor already has a flight overlapping the new slot
        """
        request = self.store.get_reschedule_request(request_id)
        booking = self.store.get_booking(request.original_booking_id)

        if not (actor.is_admin or actor.user_id == booking.instructor_id):
            raise AuthorizationError(f"User {actor.user_id} can't respond to reschedule request {request_id}")
        if request.status != RescheduleStatus.PENDING_INSTRUCTOR:
            raise InvalidStateError(f"Reschedule request {request_id} is {request.status.value}, not pending")

        current_time = self.clock()

        if not approved:
            request = self.store.reject_reschedule(request_id, reason or DEFAULT_REJECTION_REASON, current_time)
            logger.info(f"Reschedule request {request_id} rejected by {actor.user_id}")
            return RescheduleOutcome(request)

        new_booking = Booking(
            id=uuid.uuid4().hex,
            student_id=booking.student_id,
            instructor_id=booking.instructor_id,
            scheduled_date=request.proposed_date,
            duration=request.proposed_duration,
            training_level=booking.training_level,
            departure_location=booking.departure_location,
            destination_location=booking.destination_location,
            status=BookingStatus.SCHEDULED,
            notes=f"Rescheduled from booking {booking.id}",
            created_at=current_time,
        )
        request, new_booking = self.store.approve_reschedule(request_id, new_booking, current_time)
        logger.info(f"Reschedule request {request_id} approved: booking {booking.id} -> {new_booking.id}")

        payload = {
            "flight_date": format_flight_time(booking.scheduled_date, self.timezone),
            "new_date": format_flight_time(new_booking.scheduled_date, self.timezone),
            "view_url": flight_url(new_booking.id),
        }
        self._notify(NotificationKind.RESCHEDULE_CONFIRMATION, booking.student_id, payload)
        self._notify(NotificationKind.RESCHEDULE_CONFIRMATION, booking.instructor_id, payload)
        return RescheduleOutcome(request, new_booking)

    def list_pending(self, actor: Actor) -> List[RescheduleRequest]:
        """Instructors see requests on their own bookings, admins see all."""
        if actor.role == Role.ADMIN:
            return self.store.list_pending_requests()
        if actor.role == Role.INSTRUCTOR:
            return self.store.list_pending_requests(instructor_id=actor.user_id)
        raise AuthorizationError("Only instructors and admins can view pending reschedule requests")

    @staticmethod
    def _coerce_option(option) -> RescheduleOption:
        if isinstance(option, RescheduleOption):
            return option
        try:
            return RescheduleOption.model_validate(option)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid reschedule option: {e.error_count()} schema error(s)") from e

    def _user(self, user_id: str):
        try:
            return self.store.get_user(user_id)
        except Exception as e:
            logger.warning(f"Could not load user {user_id}: {e}")
            return None

    def _notify(self, kind: NotificationKind, user_id: str, payload: dict):
        if self.notifier is None:
            return None
        recipient = self._user(user_id)
        if recipient is None:
            return None
        try:
            return self.notifier.send(kind, recipient, payload)
        except Exception as e:
            logger.error(f"{kind.value} notification to user {user_id} failed: {e}")
            return None
