# flightguard/db.py
#
# SQLite booking store: users, bookings, reschedule requests and the
# append-only weather check / notification logs.
#
# Two guards live in the schema rather than in Python:
#   - a partial unique index allows one open reschedule request per booking,
#     so check-and-create is a single INSERT
#   - bookings carry a version; weather updates only apply when the version
#     read before the weather fetch is still current

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from config.settings import DB_PATH
from flightguard.api.scheduler import find_conflicts
from flightguard.exceptions import ConflictError, InvalidStateError, NotFoundError
from flightguard.models import (
    OPEN_REQUEST_STATUSES,
    ACTIVE_BOOKING_STATUSES,
    CHECKABLE_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    Location,
    RescheduleRequest,
    RescheduleStatus,
    RiskLevel,
    Role,
    TrainingLevel,
    User,
    WeatherCheckLog,
    WeatherSnapshot,
    WeatherSource,
)
from flightguard.timezone_utils import now, parse_iso_with_tz, to_utc

# longest booking we expect; bounds the overlap lookback
MAX_BOOKING_HOURS = 24

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        role TEXT NOT NULL,
        training_level TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bookings (
        id TEXT PRIMARY KEY,
        student_id TEXT NOT NULL,
        instructor_id TEXT NOT NULL,
        scheduled_date TEXT NOT NULL,
        duration REAL NOT NULL,
        training_level TEXT NOT NULL,
        departure_location TEXT NOT NULL,
        destination_location TEXT,
        status TEXT NOT NULL,
        cancellation_probability INTEGER,
        risk_level TEXT,
        notes TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS bookings_status_date ON bookings (status, scheduled_date)",
    "CREATE INDEX IF NOT EXISTS bookings_instructor_date ON bookings (instructor_id, scheduled_date)",
    """
    CREATE TABLE IF NOT EXISTS reschedule_requests (
        id TEXT PRIMARY KEY,
        original_booking_id TEXT NOT NULL REFERENCES bookings (id),
        proposed_date TEXT NOT NULL,
        proposed_duration REAL NOT NULL,
        ai_reasoning TEXT NOT NULL,
        weather_forecast TEXT NOT NULL,
        status TEXT NOT NULL,
        student_confirmed_at TEXT,
        instructor_confirmed_at TEXT,
        rejection_reason TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS one_open_request_per_booking
    ON reschedule_requests (original_booking_id)
    WHERE status IN ('PENDING_STUDENT', 'PENDING_INSTRUCTOR')
    """,
    """
    CREATE TABLE IF NOT EXISTS weather_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        booking_id TEXT NOT NULL REFERENCES bookings (id),
        weather_data TEXT NOT NULL,
        weather_source TEXT NOT NULL,
        cancellation_probability INTEGER NOT NULL,
        risk_level TEXT NOT NULL,
        conflict_details TEXT NOT NULL,
        checked_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notification_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        subject TEXT NOT NULL,
        success INTEGER NOT NULL,
        message_id TEXT,
        error TEXT,
        created_at TEXT NOT NULL
    )
    """,
]


def _ts(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC timestamp so string comparison in SQL matches time order."""
    if dt is None:
        return None
    return to_utc(dt).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return parse_iso_with_tz(value) if value else None


def _location_json(location: Optional[Location]) -> Optional[str]:
    return json.dumps(location.to_dict()) if location is not None else None


def _location(value: Optional[str]) -> Optional[Location]:
    return Location.from_dict(json.loads(value)) if value else None


def _statuses(statuses: Iterable) -> List[str]:
    return [getattr(s, "value", s) for s in statuses]


def _row_to_booking(row) -> Booking:
    return Booking(
        id=row["id"],
        student_id=row["student_id"],
        instructor_id=row["instructor_id"],
        scheduled_date=_dt(row["scheduled_date"]),
        duration=row["duration"],
        training_level=TrainingLevel(row["training_level"]),
        departure_location=_location(row["departure_location"]),
        destination_location=_location(row["destination_location"]),
        status=BookingStatus(row["status"]),
        cancellation_probability=row["cancellation_probability"],
        risk_level=RiskLevel(row["risk_level"]) if row["risk_level"] else None,
        notes=row["notes"],
        version=row["version"],
        created_at=_dt(row["created_at"]),
    )


def _row_to_request(row) -> RescheduleRequest:
    return RescheduleRequest(
        id=row["id"],
        original_booking_id=row["original_booking_id"],
        proposed_date=_dt(row["proposed_date"]),
        proposed_duration=row["proposed_duration"],
        ai_reasoning=row["ai_reasoning"],
        weather_forecast=json.loads(row["weather_forecast"]),
        status=RescheduleStatus(row["status"]),
        student_confirmed_at=_dt(row["student_confirmed_at"]),
        instructor_confirmed_at=_dt(row["instructor_confirmed_at"]),
        rejection_reason=row["rejection_reason"],
        created_at=_dt(row["created_at"]),
    )


def _row_to_weather_log(row) -> WeatherCheckLog:
    details = json.loads(row["conflict_details"])
    return WeatherCheckLog(
        id=row["id"],
        booking_id=row["booking_id"],
        weather=WeatherSnapshot.from_dict(json.loads(row["weather_data"])),
        source=WeatherSource(row["weather_source"]),
        probability=row["cancellation_probability"],
        risk_level=RiskLevel(row["risk_level"]),
        violations=details.get("violations", []),
        reasons=details.get("reasons", []),
        checked_at=_dt(row["checked_at"]),
    )


class BookingStore:
    """
    All reads return fresh dataclasses; nothing is cached between calls.
    Each public method runs in its own transaction.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self.init_db()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:  # commit on success, rollback on exception
                yield conn
        finally:
            conn.close()

    def init_db(self):
        """Create tables and indexes if they don't exist yet."""
        with self._connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def add_user(self, user: User) -> User:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO users (id, name, email, role, training_level) VALUES (?, ?, ?, ?, ?)",
                (user.id, user.name, user.email, Role(user.role).value,
                 user.training_level.value if user.training_level else None),
            )
        return user

    def get_user(self, user_id: str) -> User:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"User {user_id} not found")
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            role=Role(row["role"]),
            training_level=TrainingLevel(row["training_level"]) if row["training_level"] else None,
        )

    # ------------------------------------------------------------------
    # bookings
    # ------------------------------------------------------------------

    def create_booking(self, booking: Booking) -> Booking:
        with self._connect() as conn:
            self._insert_booking(conn, booking)
        return self.get_booking(booking.id)

    def _insert_booking(self, conn, booking: Booking):
        if not booking.id:
            booking.id = uuid.uuid4().hex
        if booking.created_at is None:
            booking.created_at = now()
        conn.execute(
            """
            INSERT INTO bookings (
                id, student_id, instructor_id, scheduled_date, duration, training_level,
                departure_location, destination_location, status, cancellation_probability,
                risk_level, notes, version, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                booking.id,
                booking.student_id,
                booking.instructor_id,
                _ts(booking.scheduled_date),
                booking.duration,
                TrainingLevel(booking.training_level).value,
                _location_json(booking.departure_location),
                _location_json(booking.destination_location),
                BookingStatus(booking.status).value,
                booking.cancellation_probability,
                booking.risk_level.value if booking.risk_level else None,
                booking.notes,
                booking.version,
                _ts(booking.created_at),
            ),
        )

    def get_booking(self, booking_id: str) -> Booking:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return _row_to_booking(row)

    def list_bookings(self, statuses: Iterable = None, start: datetime = None, end: datetime = None,
                      instructor_id: str = None) -> List[Booking]:
        """Bookings filtered by status and scheduled date (inclusive), earliest first."""
        query = "SELECT * FROM bookings WHERE 1 = 1"
        params = []
        if statuses is not None:
            values = _statuses(statuses)
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        if start is not None:
            query += " AND scheduled_date >= ?"
            params.append(_ts(start))
        if end is not None:
            query += " AND scheduled_date <= ?"
            params.append(_ts(end))
        if instructor_id is not None:
            query += " AND instructor_id = ?"
            params.append(instructor_id)
        query += " ORDER BY scheduled_date"

        with self._connect() as conn:
            return [_row_to_booking(row) for row in conn.execute(query, params).fetchall()]

    def list_bookings_for_weather_check(self, start: datetime, end: datetime) -> List[Booking]:
        return self.list_bookings(CHECKABLE_BOOKING_STATUSES, start, end)

    def find_instructor_bookings_near(self, instructor_id: str, start: datetime, end: datetime,
                                      exclude_booking_id: str = None) -> List[Booking]:
        """
        Active bookings of an instructor that start before `end` and no more than
        MAX_BOOKING_HOURS before `start`. The caller decides what counts as overlap.
        """
        bookings = self.list_bookings(
            ACTIVE_BOOKING_STATUSES,
            start=start - timedelta(hours=MAX_BOOKING_HOURS),
            end=end,
            instructor_id=instructor_id,
        )
        return [b for b in bookings if b.id != exclude_booking_id]

    def update_departure_location(self, booking_id: str, location: Location) -> Booking:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE bookings SET departure_location = ?, version = version + 1 WHERE id = ?",
                (_location_json(location), booking_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Booking {booking_id} not found")
        return self.get_booking(booking_id)

    def apply_weather_check(self, booking_id: str, expected_version: int, status: BookingStatus,
                            probability: int, risk_level: RiskLevel, log: WeatherCheckLog) -> Booking:
        """
        Write the new status/probability/risk level and append the weather log
        in one transaction.

        Raises:
            ConflictError: the booking changed since expected_version was read
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE bookings
                SET status = ?, cancellation_probability = ?, risk_level = ?, version = version + 1
                WHERE id = ? AND version = ?
                """,
                (BookingStatus(status).value, probability, RiskLevel(risk_level).value,
                 booking_id, expected_version),
            )
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM bookings WHERE id = ?", (booking_id,)).fetchone()
                if exists is None:
                    raise NotFoundError(f"Booking {booking_id} not found")
                raise ConflictError(f"Booking {booking_id} was modified during the weather check")
            self._insert_weather_log(conn, log)
        return self.get_booking(booking_id)

    # ------------------------------------------------------------------
    # weather check log
    # ------------------------------------------------------------------

    def _insert_weather_log(self, conn, log: WeatherCheckLog):
        conn.execute(
            """
            INSERT INTO weather_logs (
                booking_id, weather_data, weather_source, cancellation_probability,
                risk_level, conflict_details, checked_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                log.booking_id,
                json.dumps(log.weather.to_dict()),
                WeatherSource(log.source).value,
                log.probability,
                RiskLevel(log.risk_level).value,
                json.dumps({"violations": log.violations, "reasons": log.reasons}),
                _ts(log.checked_at),
            ),
        )

    def get_weather_logs(self, booking_id: str) -> List[WeatherCheckLog]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM weather_logs WHERE booking_id = ? ORDER BY id", (booking_id,)
            ).fetchall()
        return [_row_to_weather_log(row) for row in rows]

    # ------------------------------------------------------------------
    # reschedule requests
    # ------------------------------------------------------------------

    def create_reschedule_request(self, request: RescheduleRequest) -> RescheduleRequest:
        """
        Insert a request. The partial unique index rejects a second open
        request for the same booking, whoever gets there first wins.

        Raises:
            ConflictError: an open request already exists for the booking
            NotFoundError: the original booking does not exist
        """
        if not request.id:
            request.id = uuid.uuid4().hex
        if request.created_at is None:
            request.created_at = now()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO reschedule_requests (
                        id, original_booking_id, proposed_date, proposed_duration, ai_reasoning,
                        weather_forecast, status, student_confirmed_at, instructor_confirmed_at,
                        rejection_reason, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request.id,
                        request.original_booking_id,
                        _ts(request.proposed_date),
                        request.proposed_duration,
                        request.ai_reasoning,
                        json.dumps(request.weather_forecast),
                        RescheduleStatus(request.status).value,
                        _ts(request.student_confirmed_at),
                        _ts(request.instructor_confirmed_at),
                        request.rejection_reason,
                        _ts(request.created_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            message = str(e)
            if "FOREIGN KEY" in message:
                raise NotFoundError(f"Booking {request.original_booking_id} not found") from e
            raise ConflictError(
                f"A reschedule request is already pending for booking {request.original_booking_id}"
            ) from e
        return self.get_reschedule_request(request.id)

    def get_reschedule_request(self, request_id: str) -> RescheduleRequest:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM reschedule_requests WHERE id = ?", (request_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Reschedule request {request_id} not found")
        return _row_to_request(row)

    def list_reschedule_requests(self, booking_id: str) -> List[RescheduleRequest]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM reschedule_requests WHERE original_booking_id = ? ORDER BY created_at",
                (booking_id,),
            ).fetchall()
        return [_row_to_request(row) for row in rows]

    def get_open_request(self, booking_id: str) -> Optional[RescheduleRequest]:
        values = _statuses(OPEN_REQUEST_STATUSES)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM reschedule_requests WHERE original_booking_id = ? "
                f"AND status IN ({', '.join('?' for _ in values)})",
                [booking_id, *values],
            ).fetchone()
        return _row_to_request(row) if row else None

    def list_pending_requests(self, instructor_id: str = None) -> List[RescheduleRequest]:
        """Requests awaiting an instructor, newest first; optionally for one instructor's bookings."""
        query = (
            "SELECT r.* FROM reschedule_requests r JOIN bookings b ON b.id = r.original_booking_id "
            "WHERE r.status = ?"
        )
        params = [RescheduleStatus.PENDING_INSTRUCTOR.value]
        if instructor_id is not None:
            query += " AND b.instructor_id = ?"
            params.append(instructor_id)
        query += " ORDER BY r.created_at DESC"
        with self._connect() as conn:
            return [_row_to_request(row) for row in conn.execute(query, params).fetchall()]

    def approve_reschedule(self, request_id: str, new_booking: Booking,
                           confirmed_at: datetime) -> Tuple[RescheduleRequest, Booking]:
        """
        In one transaction: mark the request APPROVED, insert the new booking and
        flip the original booking to RESCHEDULED. Nothing is written if any check fails.

        Raises:
            InvalidStateError: the request is no longer pending, or the original
                booking was closed while the request waited
            ConflictError: the new slot overlaps another active booking of the instructor
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE reschedule_requests SET status = ?, instructor_confirmed_at = ?
                WHERE id = ? AND status = ?
                """,
                (RescheduleStatus.APPROVED.value, _ts(confirmed_at), request_id,
                 RescheduleStatus.PENDING_INSTRUCTOR.value),
            )
            if cursor.rowcount == 0:
                raise InvalidStateError(f"Reschedule request {request_id} is no longer pending instructor approval")
            original_id = conn.execute(
                "SELECT original_booking_id FROM reschedule_requests WHERE id = ?", (request_id,)
            ).fetchone()["original_booking_id"]
            original = _row_to_booking(
                conn.execute("SELECT * FROM bookings WHERE id = ?", (original_id,)).fetchone()
            )
            if original.status not in ACTIVE_BOOKING_STATUSES:
                raise InvalidStateError(f"Booking {original_id} is {original.status.value}, can't reschedule it")

            rows = conn.execute(
                "SELECT * FROM bookings WHERE instructor_id = ? AND id != ? "
                "AND scheduled_date >= ? AND scheduled_date <= ? "
                f"AND status IN ({', '.join('?' for _ in ACTIVE_BOOKING_STATUSES)})",
                [new_booking.instructor_id, original_id,
                 _ts(new_booking.scheduled_date - timedelta(hours=MAX_BOOKING_HOURS)),
                 _ts(new_booking.end_date), *_statuses(ACTIVE_BOOKING_STATUSES)],
            ).fetchall()
            conflicts = find_conflicts(new_booking.scheduled_date, timedelta(hours=new_booking.duration),
                                       [_row_to_booking(row) for row in rows])
            if conflicts:
                raise ConflictError(
                    f"Instructor {new_booking.instructor_id} already has booking {conflicts[0].id} "
                    f"overlapping {new_booking.scheduled_date.isoformat()}"
                )

            self._insert_booking(conn, new_booking)
            conn.execute(
                "UPDATE bookings SET status = ?, version = version + 1 WHERE id = ?",
                (BookingStatus.RESCHEDULED.value, original_id),
            )
        return self.get_reschedule_request(request_id), self.get_booking(new_booking.id)

    def reject_reschedule(self, request_id: str, reason: str, confirmed_at: datetime) -> RescheduleRequest:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE reschedule_requests SET status = ?, rejection_reason = ?, instructor_confirmed_at = ?
                WHERE id = ? AND status = ?
                """,
                (RescheduleStatus.REJECTED.value, reason, _ts(confirmed_at), request_id,
                 RescheduleStatus.PENDING_INSTRUCTOR.value),
            )
            if cursor.rowcount == 0:
                raise InvalidStateError(f"Reschedule request {request_id} is no longer pending instructor approval")
        return self.get_reschedule_request(request_id)

    # ------------------------------------------------------------------
    # notification log
    # ------------------------------------------------------------------

    def record_notification(self, user_id: str, kind, subject: str, success: bool,
                            message_id: str = None, error: str = None):
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notification_logs (user_id, kind, subject, success, message_id, error, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, getattr(kind, "value", kind), subject, int(bool(success)),
                 message_id, error, _ts(now())),
            )

    def list_notifications(self, user_id: str = None) -> List[dict]:
        query = "SELECT * FROM notification_logs"
        params = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY id"
        with self._connect() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def clear_all(self):
        """
        Remove everything (testing only).
        """
        with self._connect() as conn:
            for table in ("notification_logs", "weather_logs", "reschedule_requests", "bookings", "users"):
                conn.execute(f"DELETE FROM {table}")
