# scheduler.py
#
# Instructor calendar checks:
# - Lists the bookings a slot would collide with
# - Enforces the reschedule horizon (future only, at most 7 days out)

from datetime import datetime, timedelta
from typing import Iterable, List

from flightguard.models import Booking
from flightguard.timezone_utils import to_utc

# no buffer between flights unless a caller asks for one
grace_period = timedelta(0)

RESCHEDULE_HORIZON = timedelta(days=7)


def overlaps(start_time, duration, booking: Booking, grace=grace_period):
    """
    True if [start_time, start_time + duration) intersects the booking (plus grace).

    Half-open on both sides: a flight ending exactly when another starts is not
    an overlap. This is looser than flagging every booking that starts within
    duration of start_time, which would also refuse back-to-back slots.
    """
    end_time = start_time + duration
    booking_start = booking.scheduled_date - grace
    booking_end = booking.end_date + grace
    return not (end_time <= booking_start or start_time >= booking_end)


def find_conflicts(start_time, duration, bookings: Iterable[Booking], grace=grace_period) -> List[Booking]:
    start_time = to_utc(start_time)
    return [b for b in bookings if overlaps(start_time, duration, b, grace)]


def within_horizon(start_time: datetime, current_time: datetime, horizon=RESCHEDULE_HORIZON):
    """A reschedule slot must start after now and no later than now + horizon."""
    start_time = to_utc(start_time)
    return current_time < start_time <= current_time + horizon
