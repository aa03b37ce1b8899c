"""
Prediction service payload formatting and response validation.

Request Format (POST /predict):
    {
        "sensor_id": "SENSOR_001",
        "timestamp": "2024-05-01T10:00:00+00:00",
        "features": {
            "rainfall_mm": 85.0,
            "slope_angle": 72.0,
            ...
            "soil_type_silt": true
        }
    }

Batch Request Format (POST /predict/batch):
    {"readings": [<request>, ...]}

Response Format:
    {
        "risk_level": "HIGH",           # LOW | MEDIUM | HIGH
        "confidence": 0.8734,           # number in [0, 1]
        "contributing_factors": ["slope_angle", "rainfall_mm"],
        "model_version": "2.1.0"        # optional, defaults to "1.0"
    }

Batch Response Format:
    {"predictions": [<response>, ...]}
"""

from typing import Any, Dict, List

from geosafe.exceptions import MalformedResponseError
from geosafe.models.readings import (
    FEATURE_FACTOR_NAMES,
    Classification,
    ClassificationSource,
    Reading,
    RiskLevel,
)


DEFAULT_MODEL_VERSION = "1.0"
CONFIDENCE_DECIMALS = 3

_VALID_LEVELS = {level.value for level in RiskLevel}


def format_prediction_payload(reading: Reading) -> Dict[str, Any]:
    """
    Build the request body for a single prediction.

    Args:
        reading: Validated reading.

    Returns:
        Dict[str, Any]: JSON-serializable request body.
    """
    return {
        "sensor_id": reading.sensor_id,
        "timestamp": reading.timestamp.isoformat(),
        "features": reading.features.model_dump(),
    }


def format_batch_payload(readings: List[Reading]) -> Dict[str, Any]:
    """Build the request body for a batch prediction."""
    return {"readings": [format_prediction_payload(r) for r in readings]}


def normalize_factor_name(factor: str) -> str:
    """
    Map a service factor name to its canonical form.

    Unknown names pass through unchanged.

    Example:
        >>> normalize_factor_name("slope_angle")
        'Slope_Angle'
    """
    return FEATURE_FACTOR_NAMES.get(factor, factor)


def parse_prediction(data: Any, processing_time_ms: float = 0.0) -> Classification:
    """
    Validate a prediction response and convert it to a Classification.

    Args:
        data: Parsed JSON response body.
        processing_time_ms: Time taken to obtain the response.

    Returns:
        Classification: Remote classification with confidence rounded to
            three decimal places and canonical factor names.

    Raises:
        MalformedResponseError: If the payload is not an object, the risk
            level is unknown, or the confidence is not a number in [0, 1].
    """
    if not isinstance(data, dict) or not data:
        raise MalformedResponseError("Empty or non-object prediction response")

    risk_level = data.get("risk_level")
    if not isinstance(risk_level, str) or risk_level not in _VALID_LEVELS:
        raise MalformedResponseError(f"Invalid risk level: {risk_level!r}")

    confidence = data.get("confidence")
    if (
        isinstance(confidence, bool)
        or not isinstance(confidence, (int, float))
        or not 0.0 <= confidence <= 1.0
    ):
        raise MalformedResponseError(f"Invalid confidence score: {confidence!r}")

    raw_factors = data.get("contributing_factors") or []
    if not isinstance(raw_factors, list):
        raise MalformedResponseError(
            f"contributing_factors must be a list, got {type(raw_factors).__name__}"
        )
    factors = [
        normalize_factor_name(factor)
        for factor in raw_factors
        if isinstance(factor, str) and factor
    ]

    model_version = data.get("model_version") or DEFAULT_MODEL_VERSION

    return Classification(
        level=RiskLevel(risk_level),
        confidence=round(float(confidence), CONFIDENCE_DECIMALS),
        factors=factors,
        model_version=str(model_version),
        source=ClassificationSource.REMOTE,
        processing_time_ms=max(processing_time_ms, 0.0),
    )


def extract_batch_predictions(data: Any, expected: int) -> List[Any]:
    """
    Extract the per-item list from a batch response.

    Args:
        data: Parsed JSON response body.
        expected: Number of readings sent.

    Returns:
        List[Any]: Raw per-item prediction payloads.

    Raises:
        MalformedResponseError: If the predictions list is missing or its
            length does not match the request.
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Batch response is not an object")

    predictions = data.get("predictions")
    if not isinstance(predictions, list):
        raise MalformedResponseError("Batch response has no predictions list")

    if len(predictions) != expected:
        raise MalformedResponseError(
            f"Batch response has {len(predictions)} predictions for {expected} readings"
        )
    return predictions
