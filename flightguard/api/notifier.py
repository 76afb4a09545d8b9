# flightguard/api/notifier.py
#
#   E-mail notifications through a Resend-style HTTP API.
#   Sending is a side effect: failures are logged and returned, never raised,
#   so they can't undo the booking change that triggered them.

import logging
from typing import Any, Dict, NamedTuple, Optional

import httpx

from config.settings import APP_URL, EMAIL_FROM, HTTP_TIMEOUT_SECONDS, RESEND_API_KEY
from flightguard.models import NotificationKind

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class NotificationResult(NamedTuple):
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


def build_subject(kind: NotificationKind, payload: Dict[str, Any]) -> str:
    flight_date = payload.get("flight_date", "")
    if kind == NotificationKind.WEATHER_CONFLICT:
        return f"Weather Alert: Flight on {flight_date}"
    if kind == NotificationKind.BOOKING_CONFIRMATION:
        return f"Flight Booking Confirmed: {flight_date}"
    if kind == NotificationKind.RESCHEDULE_REQUEST:
        return f"Reschedule Request: {payload.get('student_name') or 'Student'} Flight"
    if kind == NotificationKind.RESCHEDULE_CONFIRMATION:
        return f"Flight Rescheduled: {payload.get('new_date', flight_date)}"
    raise ValueError(f"Unknown notification kind {kind!r}")


def build_body(kind: NotificationKind, payload: Dict[str, Any]) -> str:
    """Plain text body; the payload keys used depend on the kind."""
    name = payload.get("recipient_name") or "there"
    lines = [f"Hi {name},", ""]

    if kind == NotificationKind.WEATHER_CONFLICT:
        lines.append(
            f"Your flight on {payload.get('flight_date')} from {payload.get('departure')} "
            f"may be affected by weather."
        )
        lines.append(f"Reason: {payload.get('conflict_reason')}")
        if payload.get("probability") is not None:
            lines.append(f"Cancellation probability: {payload['probability']}% ({payload.get('risk_level')})")
        lines.append("You can review reschedule options from the flight page.")
    elif kind == NotificationKind.BOOKING_CONFIRMATION:
        lines.append(f"Your flight on {payload.get('flight_date')} from {payload.get('departure')} is confirmed.")
    elif kind == NotificationKind.RESCHEDULE_REQUEST:
        lines.append(
            f"{payload.get('student_name') or 'A student'} asked to move the flight on "
            f"{payload.get('flight_date')} to {payload.get('new_date')}."
        )
        if payload.get("reasoning"):
            lines.append(f"Suggested because: {payload['reasoning']}")
        lines.append("Please approve or reject the request.")
    elif kind == NotificationKind.RESCHEDULE_CONFIRMATION:
        lines.append(f"The flight on {payload.get('flight_date')} has been moved to {payload.get('new_date')}.")

    if payload.get("view_url"):
        lines += ["", f"View flight: {payload['view_url']}"]
    return "\n".join(lines)


def flight_url(booking_id: str) -> str:
    return f"{APP_URL}/dashboard/flights/{booking_id}"


class EmailNotifier:
    """
    Args:
        api_key: Resend API key
        store: optional BookingStore; every send is recorded in its notification log
        http_client: optional httpx.Client (tests pass one with a MockTransport)
    """

    def __init__(self, api_key=None, sender=EMAIL_FROM, store=None, timeout=HTTP_TIMEOUT_SECONDS,
                 api_url=RESEND_API_URL, http_client: httpx.Client = None):
        self.api_key = api_key or RESEND_API_KEY
        self.sender = sender
        self.store = store
        self.timeout = timeout
        self.api_url = api_url
        self.http_client = http_client or httpx.Client(timeout=timeout)

    def send(self, kind: NotificationKind, recipient, payload: Dict[str, Any]) -> NotificationResult:
        """
        Args:
            kind: NotificationKind
            recipient: User receiving the e-mail
            payload: values for the subject and body
        """
        kind = NotificationKind(kind)
        subject = build_subject(kind, payload)
        payload = {"recipient_name": recipient.name, **payload}
        result = self._deliver(recipient.email, subject, build_body(kind, payload))

        if result.success:
            logger.info(f"Sent {kind.value} e-mail to user {recipient.id}")
        else:
            logger.warning(f"Failed to send {kind.value} e-mail to user {recipient.id}: {result.error}")

        if self.store is not None:
            try:
                self.store.record_notification(recipient.id, kind, subject, result.success,
                                               message_id=result.id, error=result.error)
            except Exception as e:
                logger.error(f"Could not record {kind.value} notification for user {recipient.id}: {e}")
        return result

    def _deliver(self, to: str, subject: str, text: str) -> NotificationResult:
        if not to or "@" not in to:
            return NotificationResult(False, error=f"Invalid email address: {to!r}")

        if not self.api_key:
            # no credentials: print instead of sending
            logger.info(f"E-mail preview to {to}: {subject}\n{text}")
            return NotificationResult(True, id="console-log")

        try:
            response = self.http_client.post(
                self.api_url,
                json={"from": self.sender, "to": [to], "subject": subject, "text": text},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            return NotificationResult(False, error=f"{type(e).__name__}: {e}")

        if response.is_error:
            return NotificationResult(False, error=f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
        return NotificationResult(True, id=message_id)
