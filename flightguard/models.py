# flightguard/models.py
#
# Domain types: locations, weather snapshots, bookings, reschedule requests
# and the evaluation/assessment results that flow between them.
# RescheduleOption is a pydantic model because it is the boundary with the
# generative assistant; everything else is a plain dataclass.

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flightguard.timezone_utils import parse_iso_with_tz, to_utc


class TrainingLevel(str, Enum):
    STUDENT = "STUDENT"
    PRIVATE = "PRIVATE"
    INSTRUMENT = "INSTRUMENT"
    COMMERCIAL = "COMMERCIAL"


class BookingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    AT_RISK = "AT_RISK"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"
    COMPLETED = "COMPLETED"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class RescheduleStatus(str, Enum):
    # PENDING_STUDENT is part of the stored vocabulary but no transition
    # produces it: students confirm at the moment they accept an option.
    PENDING_STUDENT = "PENDING_STUDENT"
    PENDING_INSTRUCTOR = "PENDING_INSTRUCTOR"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class WeatherSource(str, Enum):
    TOMORROW_IO = "TOMORROW_IO"
    OPENWEATHER = "OPENWEATHER"


class Role(str, Enum):
    STUDENT = "STUDENT"
    INSTRUCTOR = "INSTRUCTOR"
    ADMIN = "ADMIN"


class ViolationCategory(str, Enum):
    VISIBILITY = "VISIBILITY"
    CEILING = "CEILING"
    WIND = "WIND"
    SEVERE = "SEVERE"
    IMC = "IMC"


class NotificationKind(str, Enum):
    BOOKING_CONFIRMATION = "BOOKING_CONFIRMATION"
    WEATHER_CONFLICT = "WEATHER_CONFLICT"
    RESCHEDULE_REQUEST = "RESCHEDULE_REQUEST"
    RESCHEDULE_CONFIRMATION = "RESCHEDULE_CONFIRMATION"


OPEN_REQUEST_STATUSES = (RescheduleStatus.PENDING_STUDENT, RescheduleStatus.PENDING_INSTRUCTOR)

# bookings that still occupy the instructor's calendar
ACTIVE_BOOKING_STATUSES = (BookingStatus.SCHEDULED, BookingStatus.AT_RISK)

# bookings the weather sweep looks at
CHECKABLE_BOOKING_STATUSES = (BookingStatus.SCHEDULED, BookingStatus.AT_RISK)


@dataclass(frozen=True)
class Location:
    name: str
    latitude: float
    longitude: float
    icao_code: Optional[str] = None
    runway_heading: Optional[float] = None  # degrees true

    def with_runway_heading(self, heading: float) -> "Location":
        return replace(self, runway_heading=heading)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "icaoCode": self.icao_code,
            "runwayHeading": self.runway_heading,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        return cls(
            name=data["name"],
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            icao_code=data.get("icaoCode"),
            runway_heading=data.get("runwayHeading"),
        )


@dataclass(frozen=True)
class WeatherSnapshot:
    """
    One forecast point, normalised to aviation units.

    temperature in °F, wind in knots, visibility in statute miles,
    cloud cover in percent, ceiling in feet AGL.
    """
    temperature: float
    wind_speed: float
    visibility: float
    cloud_cover: float
    conditions: str
    timestamp: datetime
    source: WeatherSource
    wind_direction: Optional[float] = None
    wind_gusts: Optional[float] = None
    ceiling: Optional[float] = None
    precipitation_type: Optional[str] = None
    precipitation_intensity: Optional[float] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "windSpeed": self.wind_speed,
            "windDirection": self.wind_direction,
            "windGusts": self.wind_gusts,
            "visibility": self.visibility,
            "cloudCover": self.cloud_cover,
            "ceiling": self.ceiling,
            "precipitationType": self.precipitation_type,
            "precipitationIntensity": self.precipitation_intensity,
            "conditions": self.conditions,
            "description": self.description,
            "timestamp": to_utc(self.timestamp).isoformat(),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeatherSnapshot":
        return cls(
            temperature=data["temperature"],
            wind_speed=data["windSpeed"],
            wind_direction=data.get("windDirection"),
            wind_gusts=data.get("windGusts"),
            visibility=data["visibility"],
            cloud_cover=data["cloudCover"],
            ceiling=data.get("ceiling"),
            precipitation_type=data.get("precipitationType"),
            precipitation_intensity=data.get("precipitationIntensity"),
            conditions=data["conditions"],
            description=data.get("description", ""),
            timestamp=parse_iso_with_tz(data["timestamp"]),
            source=WeatherSource(data["source"]),
        )


@dataclass(frozen=True)
class WindComponents:
    crosswind: float
    headwind: float  # signed: positive is a headwind, negative a tailwind
    tailwind: float
    estimated: bool = False  # True when the runway heading was unknown


@dataclass(frozen=True)
class Violation:
    category: ViolationCategory
    message: str
    severity: float


@dataclass(frozen=True)
class EvaluationResult:
    findings: Tuple[Violation, ...]
    severity_score: float
    wind: Optional[WindComponents] = None

    @property
    def is_safe(self) -> bool:
        return not self.findings

    @property
    def violations(self) -> List[str]:
        return [v.message for v in self.findings]

    @property
    def categories(self) -> List[ViolationCategory]:
        seen = []
        for v in self.findings:
            if v.category not in seen:
                seen.append(v.category)
        return seen


@dataclass(frozen=True)
class CancellationAssessment:
    probability: int
    risk_level: RiskLevel
    reasons: List[str]


class WeatherSummary(BaseModel):
    """Short forecast the assistant attaches to each suggestion."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    temperature: Optional[float] = None
    wind_speed: Optional[float] = Field(default=None, alias="windSpeed", ge=0)
    visibility: Optional[float] = Field(default=None, ge=0)
    conditions: Optional[str] = None


class RescheduleOption(BaseModel):
    """A candidate slot, as returned by the generative assistant."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    suggested_date: datetime = Field(alias="suggestedDate")
    suggested_duration: float = Field(alias="suggestedDuration", gt=0, le=10)
    weather_summary: WeatherSummary = Field(alias="weatherSummary")
    reasoning: str = Field(min_length=1)
    confidence_score: int = Field(alias="confidenceScore", ge=0, le=100)

    @field_validator("suggested_date")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @property
    def end_date(self) -> datetime:
        return self.suggested_date + timedelta(hours=self.suggested_duration)


class RescheduleResponse(BaseModel):
    """Shape the assistant is asked to produce; used to publish the JSON schema."""
    model_config = ConfigDict(populate_by_name=True)

    options: List[RescheduleOption]
    analysis_note: Optional[str] = Field(default=None, alias="analysisNote")


@dataclass
class User:
    id: str
    name: str
    email: str
    role: Role
    training_level: Optional[TrainingLevel] = None


@dataclass(frozen=True)
class Actor:
    """Who is performing a workflow operation."""
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class Booking:
    id: str
    student_id: str
    instructor_id: str
    scheduled_date: datetime
    duration: float  # hours
    training_level: TrainingLevel
    departure_location: Location
    destination_location: Optional[Location] = None
    status: BookingStatus = BookingStatus.SCHEDULED
    cancellation_probability: Optional[int] = None
    risk_level: Optional[RiskLevel] = None
    notes: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None

    @property
    def end_date(self) -> datetime:
        return self.scheduled_date + timedelta(hours=self.duration)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.student_id, self.instructor_id)


@dataclass
class RescheduleRequest:
    id: str
    original_booking_id: str
    proposed_date: datetime
    proposed_duration: float
    ai_reasoning: str
    status: RescheduleStatus
    weather_forecast: Dict[str, Any] = field(default_factory=dict)
    student_confirmed_at: Optional[datetime] = None
    instructor_confirmed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_REQUEST_STATUSES


@dataclass
class WeatherCheckLog:
    booking_id: str
    weather: WeatherSnapshot
    source: WeatherSource
    probability: int
    risk_level: RiskLevel
    violations: List[str]
    reasons: List[str]
    checked_at: datetime
    id: Optional[int] = None
