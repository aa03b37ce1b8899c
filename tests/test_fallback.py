"""
Rule-based fallback classifier tests.

Covers the scoring table, the score bands and the two reference scenarios.
"""

import pytest

from geosafe.classification import (
    FALLBACK_MODEL_VERSION,
    FallbackClassifier,
    classify_features,
    level_for_score,
    score_features,
)
from geosafe.models.readings import ClassificationSource, RiskLevel, SensorFeatures
from tests.conftest import HIGH_RISK_FEATURES, LOW_RISK_FEATURES, make_features


class TestScoring:
    """Point totals for individual rules and combinations"""

    def test_slope_only_scores_30_medium(self):
        """A steep slope alone lands exactly on the MEDIUM boundary"""
        features = make_features(slope_angle=55.0)
        score, factors = score_features(features)
        assert score == 30
        assert factors == ["Slope_Angle"]

        classification = classify_features(features)
        assert classification.level == RiskLevel.MEDIUM
        assert classification.confidence == 0.6

    def test_thresholds_are_strict(self):
        """Values equal to a rule threshold do not trigger it"""
        features = make_features(
            slope_angle=50.0,
            rainfall_mm=50.0,
            earthquake_activity=2.0,
            soil_saturation=0.7,
            vegetation_cover=0.3,
            proximity_to_water=50.0,
            landslide=0.5,
        )
        assert score_features(features) == (0, [])

    def test_sand_needs_saturation_above_half(self):
        """Sand contributes only with saturation > 0.5"""
        dry = make_features(soil_type_sand=True, soil_saturation=0.5)
        wet = make_features(soil_type_sand=True, soil_saturation=0.6)
        assert score_features(dry)[0] == 0
        assert score_features(wet) == (5, ["Soil_Type_Sand"])

    def test_silt_needs_rain_above_30(self):
        """Silt contributes only with rainfall > 30"""
        features = make_features(soil_type_silt=True, rainfall_mm=31.0)
        assert score_features(features) == (8, ["Soil_Type_Silt"])

    def test_factors_follow_rule_order(self):
        """Triggered factors are listed in table order, not input order"""
        features = make_features(landslide=0.9, slope_angle=60.0, rainfall_mm=70.0)
        _, factors = score_features(features)
        assert factors == ["Slope_Angle", "Rainfall_mm", "Landslide"]


class TestBands:
    """Score to level/confidence mapping"""

    @pytest.mark.parametrize(
        "score,level,confidence",
        [
            (0, RiskLevel.LOW, 0.8),
            (29, RiskLevel.LOW, 0.8),
            (30, RiskLevel.MEDIUM, 0.6),
            (59, RiskLevel.MEDIUM, 0.6),
            (60, RiskLevel.HIGH, 0.7),
            (143, RiskLevel.HIGH, 0.7),
        ],
    )
    def test_band_edges(self, score, level, confidence):
        assert level_for_score(score) == (level, confidence)


class TestScenarios:
    """Reference high- and low-risk readings"""

    def test_high_risk_scenario(self):
        """Every rule except sand fires: 143 points, HIGH at 0.7"""
        features = SensorFeatures(**HIGH_RISK_FEATURES)
        score, factors = score_features(features)
        assert score == 143
        assert factors == [
            "Slope_Angle",
            "Rainfall_mm",
            "Earthquake_Activity",
            "Soil_Saturation",
            "Vegetation_Cover",
            "Proximity_to_Water",
            "Landslide",
            "Soil_Type_Silt",
        ]

        classification = classify_features(features)
        assert classification.level == RiskLevel.HIGH
        assert classification.confidence == 0.7
        assert classification.source == ClassificationSource.FALLBACK
        assert classification.model_version == FALLBACK_MODEL_VERSION

    def test_low_risk_scenario(self):
        """Nothing fires: 0 points, LOW at 0.8"""
        features = SensorFeatures(**LOW_RISK_FEATURES)
        assert score_features(features) == (0, [])

        classification = classify_features(features)
        assert classification.level == RiskLevel.LOW
        assert classification.confidence == 0.8
        assert classification.factors == []


class TestFallbackClassifier:
    """Classifier wrapper"""

    @pytest.mark.asyncio
    async def test_classify_is_idempotent(self, high_risk_reading):
        """Same reading, same classification"""
        classifier = FallbackClassifier()
        first = await classifier.classify(high_risk_reading)
        second = await classifier.classify(high_risk_reading)
        assert first == second
        assert classifier.name == "fallback"
