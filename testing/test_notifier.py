# testing/test_notifier.py
"""
Tests for e-mail notifications.
"""

import json
from unittest.mock import patch

import httpx

from flightguard.api.notifier import EmailNotifier, build_subject
from flightguard.db import BookingStore
from flightguard.models import NotificationKind, Role, User

RECIPIENT = User("student-1", "Sam Student", "sam@example.com", Role.STUDENT)

ALERT_PAYLOAD = {
    "flight_date": "Monday, October 19, 2026 at 7:00 AM CDT",
    "departure": "Austin Executive",
    "conflict_reason": "Visibility 2.0 mi below minimum of 3 mi",
    "probability": 41,
    "risk_level": "MODERATE",
    "view_url": "http://localhost:3000/dashboard/flights/booking-1",
}


def make_notifier(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return EmailNotifier(api_key="re_test", sender="School <noreply@example.com>", http_client=client, **kwargs)


def test_subjects_per_kind():
    assert build_subject(NotificationKind.WEATHER_CONFLICT, {"flight_date": "Mon"}) == "Weather Alert: Flight on Mon"
    assert build_subject(NotificationKind.BOOKING_CONFIRMATION, {"flight_date": "Mon"}) == \
        "Flight Booking Confirmed: Mon"
    assert build_subject(NotificationKind.RESCHEDULE_REQUEST, {"student_name": "Sam"}) == \
        "Reschedule Request: Sam Flight"
    assert build_subject(NotificationKind.RESCHEDULE_CONFIRMATION, {"new_date": "Wed"}) == "Flight Rescheduled: Wed"


def test_send_posts_email():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "email-123"})

    result = make_notifier(handler).send(NotificationKind.WEATHER_CONFLICT, RECIPIENT, ALERT_PAYLOAD)

    assert result.success is True
    assert result.id == "email-123"
    assert seen["auth"] == "Bearer re_test"
    assert seen["body"]["to"] == ["sam@example.com"]
    assert seen["body"]["subject"] == "Weather Alert: Flight on Monday, October 19, 2026 at 7:00 AM CDT"
    assert "Hi Sam Student," in seen["body"]["text"]
    assert "Cancellation probability: 41% (MODERATE)" in seen["body"]["text"]


def test_send_failure_is_returned_not_raised():
    notifier = make_notifier(lambda request: httpx.Response(422, json={"message": "invalid from"}))
    result = notifier.send(NotificationKind.WEATHER_CONFLICT, RECIPIENT, ALERT_PAYLOAD)
    assert result.success is False
    assert "422" in result.error


def test_transport_error_is_returned_not_raised():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = make_notifier(handler).send(NotificationKind.WEATHER_CONFLICT, RECIPIENT, ALERT_PAYLOAD)
    assert result.success is False
    assert "ConnectError" in result.error


def test_invalid_address_is_not_sent():
    calls = []
    notifier = make_notifier(lambda request: calls.append(request) or httpx.Response(200, json={"id": "x"}))
    result = notifier.send(NotificationKind.WEATHER_CONFLICT, User("u", "U", "not-an-email", Role.STUDENT),
                           ALERT_PAYLOAD)
    assert result.success is False
    assert calls == []


def test_without_api_key_prints_preview():
    with patch("flightguard.api.notifier.RESEND_API_KEY", None):
        notifier = EmailNotifier(api_key=None)
        result = notifier.send(NotificationKind.BOOKING_CONFIRMATION, RECIPIENT, {"flight_date": "Mon"})
    assert result.success is True
    assert result.id == "console-log"


def test_sends_are_recorded_in_store(tmp_path):
    store = BookingStore(str(tmp_path / "notify.db"))
    notifier = make_notifier(lambda request: httpx.Response(200, json={"id": "email-9"}), store=store)

    notifier.send(NotificationKind.RESCHEDULE_CONFIRMATION, RECIPIENT, {"new_date": "Wed"})

    rows = store.list_notifications(RECIPIENT.id)
    assert len(rows) == 1
    assert rows[0]["kind"] == "RESCHEDULE_CONFIRMATION"
    assert rows[0]["subject"] == "Flight Rescheduled: Wed"
    assert rows[0]["message_id"] == "email-9"
