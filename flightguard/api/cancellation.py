# cancellation.py
#
#   Turns a weather evaluation into a cancellation probability and risk level.
#   probability = severity * training multiplier + one flat weight per
#   violation category, clamped to 0-100 and rounded.

import math

from flightguard.models import (
    BookingStatus,
    CancellationAssessment,
    EvaluationResult,
    RiskLevel,
    TrainingLevel,
    ViolationCategory,
)

# stricter for less experienced pilots
TRAINING_MULTIPLIERS = {
    TrainingLevel.STUDENT: 1.2,
    TrainingLevel.PRIVATE: 1.1,
    TrainingLevel.INSTRUMENT: 1.0,
    TrainingLevel.COMMERCIAL: 0.9,
}

CATEGORY_WEIGHTS = {
    ViolationCategory.WIND: (5, "High wind conditions"),
    ViolationCategory.VISIBILITY: (4, "Low visibility conditions"),
    ViolationCategory.CEILING: (3, "Low ceiling conditions"),
    ViolationCategory.SEVERE: (15, "Severe weather conditions"),
    ViolationCategory.IMC: (10, "Instrument conditions not permitted"),
}

SAFE_REASON = "Weather conditions meet all minimums"


def risk_level_for(probability: float) -> RiskLevel:
    """0-30 LOW, 31-60 MODERATE, 61-85 HIGH, above 85 EXTREME."""
    if probability <= 30:
        return RiskLevel.LOW
    if probability <= 60:
        return RiskLevel.MODERATE
    if probability <= 85:
        return RiskLevel.HIGH
    return RiskLevel.EXTREME


def calculate_cancellation_probability(evaluation: EvaluationResult, training_level) -> CancellationAssessment:
    """
    Args:
        evaluation: result of evaluate_weather_safety
        training_level: TrainingLevel (or its string value) of the student
    Returns:
        CancellationAssessment with an integer probability in [0, 100]
    """
    if evaluation.is_safe:
        return CancellationAssessment(probability=0, risk_level=RiskLevel.LOW, reasons=[SAFE_REASON])

    probability = evaluation.severity_score * TRAINING_MULTIPLIERS[TrainingLevel(training_level)]

    reasons = []
    for category in evaluation.categories:
        weight, reason = CATEGORY_WEIGHTS[category]
        probability += weight
        reasons.append(reason)

    probability = min(100.0, max(0.0, probability))
    # round half up (round() is banker's rounding)
    rounded = int(math.floor(probability + 0.5))

    return CancellationAssessment(probability=rounded, risk_level=risk_level_for(rounded), reasons=reasons)


def booking_status_for(assessment: CancellationAssessment) -> BookingStatus:
    """Any chance of cancellation flags the booking."""
    return BookingStatus.AT_RISK if assessment.probability > 0 else BookingStatus.SCHEDULED
