"""
Remote prediction service integration.

Modules:
    client: PredictionClient with retry, backoff and batch support
    normalizer: Request formatting and response validation
"""

from geosafe.prediction.client import (
    PredictionClient,
    PredictionServiceError,
    create_prediction_client,
)
from geosafe.prediction.normalizer import (
    format_batch_payload,
    format_prediction_payload,
    normalize_factor_name,
    parse_prediction,
)

__all__: list[str] = [
    "PredictionClient",
    "PredictionServiceError",
    "create_prediction_client",
    "format_prediction_payload",
    "format_batch_payload",
    "normalize_factor_name",
    "parse_prediction",
]
