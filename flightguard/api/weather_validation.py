# weather_validation.py
#
#   Evaluates one weather snapshot against training level minimums.
#   Pure and deterministic: no I/O, no clock, no logging.

import math
from typing import List, Optional

from flightguard.minimums import TrainingLevelMinimums
from flightguard.models import (
    EvaluationResult,
    Violation,
    ViolationCategory,
    WeatherSnapshot,
    WindComponents,
)

WORST_CASE = "worst_case"
TOTAL_WIND_ONLY = "total_wind_only"
UNKNOWN_RUNWAY_POLICIES = (WORST_CASE, TOTAL_WIND_ONLY)

GUST_FACTOR = 1.5
IMC_VISIBILITY = 3  # statute miles
IMC_CLOUD_COVER = 80  # percent
SEVERE_CONDITIONS = ("thunderstorm", "tornado", "severe", "extreme")

GUST_SEVERITY = 20
IMC_SEVERITY = 30
SEVERE_SEVERITY = 50
MAX_SEVERITY = 100


def wind_components(wind_speed: float, wind_direction: float, runway_heading: float) -> WindComponents:
    """
    Split wind into components relative to the runway centerline.

    angle = |wind direction - runway heading| folded into [0, 180]
    crosswind = |speed * sin(angle)|
    headwind = speed * cos(angle)   (negative means tailwind)
    tailwind = max(0, -headwind)
    """
    angle = abs(wind_direction - runway_heading) % 360
    if angle > 180:
        angle = 360 - angle
    radians = math.radians(angle)

    crosswind = abs(wind_speed * math.sin(radians))
    headwind = wind_speed * math.cos(radians)
    tailwind = max(0.0, -headwind)
    return WindComponents(crosswind=crosswind, headwind=headwind, tailwind=tailwind)


def worst_case_components(wind_speed: float) -> WindComponents:
    """Runway unknown: assume the full wind is both crosswind and tailwind."""
    return WindComponents(crosswind=wind_speed, headwind=0.0, tailwind=wind_speed, estimated=True)


def evaluate_weather_safety(
    weather: WeatherSnapshot,
    minimums: TrainingLevelMinimums,
    runway_heading: Optional[float] = None,
    unknown_runway_policy: str = WORST_CASE,
) -> EvaluationResult:
    """
    Compare a snapshot with the minimums for a training level.

    Each broken rule adds a violation and its severity; the total is capped
    at 100 and the flight is safe only when nothing was violated.

    Args:
        weather: forecast for the flight
        minimums: limits for the pilot's training level
        runway_heading: degrees true, None when unknown
        unknown_runway_policy: WORST_CASE or TOTAL_WIND_ONLY, only consulted
            when the runway heading or wind direction is unknown
    """
    if unknown_runway_policy not in UNKNOWN_RUNWAY_POLICIES:
        raise ValueError(f"Unknown runway policy {unknown_runway_policy!r}")

    findings: List[Violation] = []

    if weather.visibility < minimums.visibility:
        deficit = minimums.visibility - weather.visibility
        findings.append(Violation(
            ViolationCategory.VISIBILITY,
            f"Visibility {weather.visibility:.1f} mi below minimum of {minimums.visibility:g} mi",
            deficit / minimums.visibility * 100,
        ))

    if minimums.ceiling is not None and weather.ceiling is not None and weather.ceiling < minimums.ceiling:
        deficit = minimums.ceiling - weather.ceiling
        findings.append(Violation(
            ViolationCategory.CEILING,
            f"Ceiling {weather.ceiling:.0f} ft below minimum of {minimums.ceiling:g} ft",
            deficit / minimums.ceiling * 100,
        ))

    if weather.wind_speed > minimums.max_wind_speed:
        excess = weather.wind_speed - minimums.max_wind_speed
        findings.append(Violation(
            ViolationCategory.WIND,
            f"Wind speed {weather.wind_speed:.1f} kt exceeds maximum of {minimums.max_wind_speed:g} kt",
            excess / minimums.max_wind_speed * 100,
        ))

    if weather.wind_gusts is not None and weather.wind_gusts > minimums.max_wind_speed * GUST_FACTOR:
        findings.append(Violation(
            ViolationCategory.WIND,
            f"Wind gusts {weather.wind_gusts:.1f} kt exceed safe limits",
            GUST_SEVERITY,
        ))

    if runway_heading is not None and weather.wind_direction is not None:
        wind = wind_components(weather.wind_speed, weather.wind_direction, runway_heading)
    elif unknown_runway_policy == WORST_CASE:
        wind = worst_case_components(weather.wind_speed)
    else:
        wind = None

    if wind is not None:
        qualifier = "Estimated " if wind.estimated else ""
        if wind.crosswind > minimums.max_crosswind:
            excess = wind.crosswind - minimums.max_crosswind
            findings.append(Violation(
                ViolationCategory.WIND,
                f"{qualifier}Crosswind {wind.crosswind:.1f} kt exceeds maximum of {minimums.max_crosswind:g} kt",
                max(0.0, excess / minimums.max_crosswind * 50),
            ))
        if wind.tailwind > minimums.max_tailwind:
            excess = wind.tailwind - minimums.max_tailwind
            findings.append(Violation(
                ViolationCategory.WIND,
                f"{qualifier}Tailwind {wind.tailwind:.1f} kt exceeds maximum of {minimums.max_tailwind:g} kt",
                max(0.0, excess / minimums.max_tailwind * 50),
            ))

    if (not minimums.allow_imc and weather.visibility < IMC_VISIBILITY
            and weather.cloud_cover > IMC_CLOUD_COVER):
        findings.append(Violation(
            ViolationCategory.IMC,
            "IMC conditions not allowed for this training level",
            IMC_SEVERITY,
        ))

    conditions = (weather.conditions or "").lower()
    if any(word in conditions for word in SEVERE_CONDITIONS):
        findings.append(Violation(
            ViolationCategory.SEVERE,
            f"Severe weather conditions: {weather.conditions}",
            SEVERE_SEVERITY,
        ))

    severity = sum(v.severity for v in findings)
    severity = min(MAX_SEVERITY, max(0.0, severity))

    return EvaluationResult(findings=tuple(findings), severity_score=severity, wind=wind)
