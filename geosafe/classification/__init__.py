"""
Risk classification strategies.

Modules:
    base: RiskClassifier interface
    fallback: Rule-table classifier used when the remote service is unavailable
    remote: Classifier backed by the prediction service
"""

from geosafe.classification.base import RiskClassifier
from geosafe.classification.fallback import (
    FALLBACK_MODEL_VERSION,
    SCORING_RULES,
    FallbackClassifier,
    classify_features,
    level_for_score,
    score_features,
)
from geosafe.classification.remote import RemoteClassifier

__all__: list[str] = [
    "RiskClassifier",
    "FallbackClassifier",
    "RemoteClassifier",
    "FALLBACK_MODEL_VERSION",
    "SCORING_RULES",
    "classify_features",
    "level_for_score",
    "score_features",
]
