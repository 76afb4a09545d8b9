# testing/test_reschedule_workflow.py
"""
Tests for the reschedule workflow:
- who may generate, accept and respond
- the single open request rule
- approve / reject transitions and their notifications
"""

import sqlite3
from datetime import timedelta

import pytest

from flightguard.api.reschedule_workflow import DEFAULT_REJECTION_REASON, RescheduleWorkflow
from flightguard.api.rescheduler import RescheduleOptionGenerator
from flightguard.api.weather_cache import WeatherCache
from flightguard.api.weather_router import WeatherRouter
from flightguard.db import BookingStore
from flightguard.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    ValidationError,
)
from flightguard.models import (
    Actor,
    BookingStatus,
    NotificationKind,
    RescheduleOption,
    RescheduleStatus,
    Role,
    WeatherSource,
)
from testing.mock_data import (
    ADMIN_ID,
    INSTRUCTOR_ID,
    NOW,
    OTHER_INSTRUCTOR_ID,
    STUDENT_ID,
    FakeAssistant,
    FakeClock,
    FakeNotifier,
    FakeProvider,
    make_assistant_reply,
    make_booking,
    make_option_payload,
    seed_users,
)

STUDENT = Actor(STUDENT_ID, Role.STUDENT)
INSTRUCTOR = Actor(INSTRUCTOR_ID, Role.INSTRUCTOR)
OTHER_INSTRUCTOR = Actor(OTHER_INSTRUCTOR_ID, Role.INSTRUCTOR)
ADMIN = Actor(ADMIN_ID, Role.ADMIN)

GOOD_DATES = [NOW + timedelta(days=2), NOW + timedelta(days=3), NOW + timedelta(days=4)]


@pytest.fixture
def store(tmp_path):
    store = BookingStore(str(tmp_path / "workflow.db"))
    seed_users(store)
    return store


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def workflow(store, notifier):
    clock = FakeClock()
    router = WeatherRouter(FakeProvider(WeatherSource.TOMORROW_IO), FakeProvider(WeatherSource.OPENWEATHER),
                           cache=WeatherCache(), clock=clock)
    generator = RescheduleOptionGenerator(router, FakeAssistant(make_assistant_reply(GOOD_DATES)), store,
                                          clock=clock)
    return RescheduleWorkflow(store, generator, notifier=notifier, clock=clock)


@pytest.fixture
def booking(store):
    return store.create_booking(make_booking(status=BookingStatus.AT_RISK))


def option(date=None, **kwargs):
    return RescheduleOption.model_validate(make_option_payload(date or GOOD_DATES[0], **kwargs))


def test_generate_options_for_participants(workflow, booking):
    assert len(workflow.generate_options(booking.id, STUDENT)) == 3
    assert len(workflow.generate_options(booking.id, INSTRUCTOR)) == 3
    assert len(workflow.generate_options(booking.id, ADMIN)) == 3


def test_generate_options_refuses_outsiders(workflow, booking):
    with pytest.raises(AuthorizationError):
        workflow.generate_options(booking.id, OTHER_INSTRUCTOR)


def test_generate_options_requires_at_risk(workflow, store):
    scheduled = store.create_booking(make_booking("calm", status=BookingStatus.SCHEDULED))
    with pytest.raises(InvalidStateError) as excinfo:
        workflow.generate_options(scheduled.id, STUDENT)
    assert isinstance(excinfo.value, ConflictError)


def test_generate_options_does_not_write(workflow, store, booking):
    workflow.generate_options(booking.id, STUDENT)
    assert store.list_reschedule_requests(booking.id) == []
    assert store.get_booking(booking.id).version == booking.version


def test_accept_creates_pending_request_and_notifies_instructor(workflow, store, notifier, booking):
    request = workflow.accept_option(booking.id, option(), STUDENT)

    assert request.status == RescheduleStatus.PENDING_INSTRUCTOR
    assert request.proposed_date == GOOD_DATES[0]
    assert request.proposed_duration == 2.0
    assert request.student_confirmed_at == NOW
    assert request.weather_forecast["windSpeed"] == 6
    assert request.weather_forecast["confidenceScore"] == 85
    assert store.get_booking(booking.id).status == BookingStatus.AT_RISK

    assert len(notifier.sent) == 1
    kind, recipient_id, payload = notifier.sent[0]
    assert kind == NotificationKind.RESCHEDULE_REQUEST
    assert recipient_id == INSTRUCTOR_ID
    assert payload["student_name"] == "Sam Student"


def test_accept_takes_the_json_form_of_an_option(workflow, booking):
    request = workflow.accept_option(booking.id, make_option_payload(GOOD_DATES[1]), STUDENT)
    assert request.proposed_date == GOOD_DATES[1]


def test_second_accept_is_a_conflict(workflow, store, booking):
    workflow.accept_option(booking.id, option(GOOD_DATES[0]), STUDENT)

    with pytest.raises(ConflictError):
        workflow.accept_option(booking.id, option(GOOD_DATES[1]), STUDENT)
    assert len(store.list_reschedule_requests(booking.id)) == 1


def test_only_the_student_accepts(workflow, booking):
    with pytest.raises(AuthorizationError):
        workflow.accept_option(booking.id, option(), INSTRUCTOR)


def test_accept_rejects_invalid_options(workflow, store, booking):
    with pytest.raises(ValidationError):
        workflow.accept_option(booking.id, {"suggestedDate": GOOD_DATES[0].isoformat()}, STUDENT)
    with pytest.raises(ValidationError):
        workflow.accept_option(booking.id, option(NOW - timedelta(hours=2)), STUDENT)
    with pytest.raises(ValidationError):
        workflow.accept_option(booking.id, option(NOW + timedelta(days=10)), STUDENT)
    assert store.list_reschedule_requests(booking.id) == []


def test_accept_rejects_instructor_double_booking(workflow, store, booking):
    store.create_booking(make_booking("busy", scheduled_date=GOOD_DATES[0] + timedelta(minutes=30)))
    with pytest.raises(ConflictError):
        workflow.accept_option(booking.id, option(GOOD_DATES[0]), STUDENT)


@pytest.mark.parametrize("status", [BookingStatus.CANCELLED, BookingStatus.RESCHEDULED, BookingStatus.COMPLETED])
def test_accept_on_closed_booking(workflow, store, status):
    closed = store.create_booking(make_booking("closed", status=status))
    with pytest.raises(InvalidStateError):
        workflow.accept_option(closed.id, option(), STUDENT)


def test_approve_moves_the_flight(workflow, store, notifier, booking):
    request = workflow.accept_option(booking.id, option(GOOD_DATES[1]), STUDENT)
    notifier.sent.clear()

    outcome = workflow.respond_to_reschedule(request.id, True, INSTRUCTOR)

    assert outcome.request.status == RescheduleStatus.APPROVED
    assert outcome.request.instructor_confirmed_at == NOW
    new_booking = outcome.new_booking
    assert new_booking.status == BookingStatus.SCHEDULED
    assert new_booking.scheduled_date == GOOD_DATES[1]
    assert new_booking.student_id == STUDENT_ID
    assert new_booking.instructor_id == INSTRUCTOR_ID
    assert new_booking.training_level == booking.training_level
    assert new_booking.departure_location == booking.departure_location
    assert new_booking.notes == f"Rescheduled from booking {booking.id}"
    assert store.get_booking(booking.id).status == BookingStatus.RESCHEDULED

    instructor_bookings = store.list_bookings(instructor_id=INSTRUCTOR_ID)
    assert sorted(b.id for b in instructor_bookings) == sorted([booking.id, new_booking.id])

    assert [(k, r) for k, r, _ in notifier.sent] == [
        (NotificationKind.RESCHEDULE_CONFIRMATION, STUDENT_ID),
        (NotificationKind.RESCHEDULE_CONFIRMATION, INSTRUCTOR_ID),
    ]


def test_second_response_changes_nothing(workflow, store, booking):
    request = workflow.accept_option(booking.id, option(), STUDENT)
    workflow.respond_to_reschedule(request.id, True, INSTRUCTOR)

    with pytest.raises(InvalidStateError):
        workflow.respond_to_reschedule(request.id, True, INSTRUCTOR)
    with pytest.raises(InvalidStateError):
        workflow.respond_to_reschedule(request.id, False, INSTRUCTOR)

    assert store.get_reschedule_request(request.id).status == RescheduleStatus.APPROVED
    assert len(store.list_bookings(instructor_id=INSTRUCTOR_ID)) == 2


def test_reject_keeps_original_booking(workflow, store, notifier, booking):
    request = workflow.accept_option(booking.id, option(), STUDENT)
    notifier.sent.clear()

    outcome = workflow.respond_to_reschedule(request.id, False, INSTRUCTOR)

    assert outcome.new_booking is None
    assert outcome.request.status == RescheduleStatus.REJECTED
    assert outcome.request.rejection_reason == DEFAULT_REJECTION_REASON
    assert outcome.request.instructor_confirmed_at == NOW
    assert store.get_booking(booking.id).status == BookingStatus.AT_RISK
    assert notifier.sent == []


def test_reject_with_reason_then_accept_again(workflow, booking):
    first = workflow.accept_option(booking.id, option(GOOD_DATES[0]), STUDENT)
    outcome = workflow.respond_to_reschedule(first.id, False, INSTRUCTOR, reason="Aircraft in maintenance")
    assert outcome.request.rejection_reason == "Aircraft in maintenance"

    second = workflow.accept_option(booking.id, option(GOOD_DATES[1]), STUDENT)
    assert second.status == RescheduleStatus.PENDING_INSTRUCTOR


def test_only_the_instructor_or_admin_responds(workflow, booking):
    request = workflow.accept_option(booking.id, option(), STUDENT)

    with pytest.raises(AuthorizationError):
        workflow.respond_to_reschedule(request.id, True, STUDENT)
    with pytest.raises(AuthorizationError):
        workflow.respond_to_reschedule(request.id, True, OTHER_INSTRUCTOR)

    outcome = workflow.respond_to_reschedule(request.id, True, ADMIN)
    assert outcome.request.status == RescheduleStatus.APPROVED


def test_list_pending(workflow, store, booking):
    other = store.create_booking(make_booking("other", status=BookingStatus.AT_RISK,
                                              instructor_id=OTHER_INSTRUCTOR_ID))
    mine = workflow.accept_option(booking.id, option(GOOD_DATES[0]), STUDENT)
    theirs = workflow.accept_option(other.id, option(GOOD_DATES[1]), STUDENT)

    assert [r.id for r in workflow.list_pending(INSTRUCTOR)] == [mine.id]
    assert [r.id for r in workflow.list_pending(OTHER_INSTRUCTOR)] == [theirs.id]
    assert {r.id for r in workflow.list_pending(ADMIN)} == {mine.id, theirs.id}
    with pytest.raises(AuthorizationError):
        workflow.list_pending(STUDENT)


def test_notification_failure_does_not_undo_the_request(store, booking):
    class ExplodingNotifier:
        def send(self, kind, recipient, payload):
            raise RuntimeError("smtp down")

    clock = FakeClock()
    router = WeatherRouter(FakeProvider(WeatherSource.TOMORROW_IO), FakeProvider(WeatherSource.OPENWEATHER),
                           clock=clock)
    generator = RescheduleOptionGenerator(router, FakeAssistant(), store, clock=clock)
    workflow = RescheduleWorkflow(store, generator, notifier=ExplodingNotifier(), clock=clock)

    request = workflow.accept_option(booking.id, option(), STUDENT)
    assert store.get_open_request(booking.id).id == request.id


def test_approving_two_requests_for_the_same_slot(workflow, store, notifier, booking):
    second = store.create_booking(make_booking("booking-2", scheduled_date=NOW + timedelta(days=1, hours=3),
                                               status=BookingStatus.AT_RISK))
    first_request = workflow.accept_option(booking.id, option(GOOD_DATES[0]), STUDENT)
    second_request = workflow.accept_option(second.id, option(GOOD_DATES[0]), STUDENT)
    workflow.respond_to_reschedule(first_request.id, True, INSTRUCTOR)
    notifier.sent.clear()

    with pytest.raises(ConflictError):
        workflow.respond_to_reschedule(second_request.id, True, INSTRUCTOR)

    assert store.get_reschedule_request(second_request.id).status == RescheduleStatus.PENDING_INSTRUCTOR
    assert store.get_booking(second.id).status == BookingStatus.AT_RISK
    at_slot = [b for b in store.list_bookings(instructor_id=INSTRUCTOR_ID) if b.scheduled_date == GOOD_DATES[0]]
    assert len(at_slot) == 1
    assert notifier.sent == []

    # the instructor can still turn it down
    outcome = workflow.respond_to_reschedule(second_request.id, False, INSTRUCTOR)
    assert outcome.request.status == RescheduleStatus.REJECTED


def test_approve_after_booking_was_cancelled(workflow, store, booking):
    request = workflow.accept_option(booking.id, option(), STUDENT)
    conn = sqlite3.connect(store.db_path)
    with conn:
        conn.execute("UPDATE bookings SET status = ? WHERE id = ?", (BookingStatus.CANCELLED.value, booking.id))
    conn.close()

    with pytest.raises(InvalidStateError):
        workflow.respond_to_reschedule(request.id, True, INSTRUCTOR)

    assert store.get_booking(booking.id).status == BookingStatus.CANCELLED
    assert store.get_reschedule_request(request.id).status == RescheduleStatus.PENDING_INSTRUCTOR
    assert [b.id for b in store.list_bookings(instructor_id=INSTRUCTOR_ID)] == [booking.id]
