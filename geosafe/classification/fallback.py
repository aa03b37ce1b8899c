"""
Rule-based fallback risk classifier.

Used whenever the remote prediction service cannot produce a result. The
score is a sum of fixed points for each rule whose condition holds; the
score band then fixes the level and confidence.

Rules (in factor order):
    slope_angle > 50                          30  Slope_Angle
    rainfall_mm > 50                          25  Rainfall_mm
    earthquake_activity > 2.0                 20  Earthquake_Activity
    soil_saturation > 0.7                     15  Soil_Saturation
    vegetation_cover < 0.3                    10  Vegetation_Cover
    proximity_to_water < 50                   10  Proximity_to_Water
    landslide > 0.5                           25  Landslide
    soil_type_sand and soil_saturation > 0.5   5  Soil_Type_Sand
    soil_type_silt and rainfall_mm > 30        8  Soil_Type_Silt

Bands:
    score >= 60       HIGH    confidence 0.7
    30 <= score < 60  MEDIUM  confidence 0.6
    score < 30        LOW     confidence 0.8

Example:
    >>> score, factors = score_features(features)
    >>> classification = classify_features(features)
    >>> classification.model_version
    'fallback-2.0'
"""

from typing import Callable, List, NamedTuple, Tuple

from geosafe.classification.base import RiskClassifier
from geosafe.models.readings import (
    Classification,
    ClassificationSource,
    Reading,
    RiskLevel,
    SensorFeatures,
)


FALLBACK_MODEL_VERSION = "fallback-2.0"
FALLBACK_PROCESSING_TIME_MS = 10.0

HIGH_SCORE = 60
MEDIUM_SCORE = 30


class ScoringRule(NamedTuple):
    """One row of the fallback rule table."""

    factor: str
    points: int
    condition: Callable[[SensorFeatures], bool]


SCORING_RULES: Tuple[ScoringRule, ...] = (
    ScoringRule("Slope_Angle", 30, lambda f: f.slope_angle > 50),
    ScoringRule("Rainfall_mm", 25, lambda f: f.rainfall_mm > 50),
    ScoringRule("Earthquake_Activity", 20, lambda f: f.earthquake_activity > 2.0),
    ScoringRule("Soil_Saturation", 15, lambda f: f.soil_saturation > 0.7),
    ScoringRule("Vegetation_Cover", 10, lambda f: f.vegetation_cover < 0.3),
    ScoringRule("Proximity_to_Water", 10, lambda f: f.proximity_to_water < 50),
    ScoringRule("Landslide", 25, lambda f: f.landslide > 0.5),
    ScoringRule(
        "Soil_Type_Sand", 5, lambda f: f.soil_type_sand and f.soil_saturation > 0.5
    ),
    ScoringRule(
        "Soil_Type_Silt", 8, lambda f: f.soil_type_silt and f.rainfall_mm > 30
    ),
)


def score_features(features: SensorFeatures) -> Tuple[int, List[str]]:
    """
    Sum rule points for a feature vector.

    Args:
        features: Validated feature values.

    Returns:
        Tuple of (score, triggered factor names in rule order).
    """
    score = 0
    factors: List[str] = []
    for rule in SCORING_RULES:
        if rule.condition(features):
            score += rule.points
            factors.append(rule.factor)
    return score, factors


def level_for_score(score: int) -> Tuple[RiskLevel, float]:
    """Map a score to its (level, confidence) band."""
    if score >= HIGH_SCORE:
        return RiskLevel.HIGH, 0.7
    if score >= MEDIUM_SCORE:
        return RiskLevel.MEDIUM, 0.6
    return RiskLevel.LOW, 0.8


def classify_features(features: SensorFeatures) -> Classification:
    """
    Classify a feature vector with the fallback rule table.

    Pure and total for validated input.

    Args:
        features: Validated feature values.

    Returns:
        Classification: Tagged with the fallback model version.
    """
    score, factors = score_features(features)
    level, confidence = level_for_score(score)
    return Classification(
        level=level,
        confidence=confidence,
        factors=factors,
        model_version=FALLBACK_MODEL_VERSION,
        source=ClassificationSource.FALLBACK,
        processing_time_ms=FALLBACK_PROCESSING_TIME_MS,
    )


class FallbackClassifier(RiskClassifier):
    """Local rule-table classifier. Never performs I/O and never fails."""

    @property
    def name(self) -> str:
        return "fallback"

    async def classify(self, reading: Reading) -> Classification:
        return classify_features(reading.features)
