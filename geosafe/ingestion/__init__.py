"""
Reading ingestion.

Provides:
    - IngestionCoordinator: Validate, classify, persist and alert
    - ReadingConsumer: Concurrent ingestion of readings from a pub/sub channel
    - validate_features: Range checks reporting every violation
"""

from geosafe.ingestion.coordinator import (
    BatchIngestResult,
    BatchItemError,
    IngestionCoordinator,
    IngestResult,
    create_ingestion_coordinator,
)
from geosafe.ingestion.consumer import ReadingConsumer, SubscriptionLostError
from geosafe.ingestion.validation import (
    FEATURE_RANGES,
    find_range_violations,
    validate_features,
)

__all__: list[str] = [
    "IngestionCoordinator",
    "IngestResult",
    "BatchIngestResult",
    "BatchItemError",
    "create_ingestion_coordinator",
    "ReadingConsumer",
    "SubscriptionLostError",
    "FEATURE_RANGES",
    "find_range_violations",
    "validate_features",
]
