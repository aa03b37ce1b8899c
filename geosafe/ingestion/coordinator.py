"""
Ingestion coordinator.

Runs one reading through the whole pipeline:

    validate -> sensor lookup -> classify (remote, else fallback)
    -> persist -> broadcast -> alert if HIGH

The coordinator is the only place that decides between the remote and the
fallback classifier. Callers always receive a classification; whether it
came from the fallback is recorded on the stored reading.

Example:
    >>> coordinator = IngestionCoordinator(
    ...     repository=repository,
    ...     remote=RemoteClassifier(prediction_client),
    ...     fallback=FallbackClassifier(),
    ...     alert_manager=manager,
    ...     broadcaster=broadcaster,
    ... )
    >>> stored, alert = await coordinator.ingest(reading)
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field

from geosafe.alerting.manager import AlertManager
from geosafe.classification.base import RiskClassifier
from geosafe.config.models import IngestionConfig
from geosafe.exceptions import (
    BatchSizeError,
    GeoSafeError,
    NotFoundError,
    PredictionUnavailableError,
)
from geosafe.ingestion.validation import validate_features
from geosafe.interfaces.broadcaster import Broadcaster, BroadcastTopic
from geosafe.interfaces.repository import Repository
from geosafe.models.alerts import Alert
from geosafe.models.readings import Classification, Reading, StoredReading

logger = structlog.get_logger(__name__)


class IngestResult(BaseModel):
    """Outcome of ingesting one reading."""

    model_config = {"frozen": True, "extra": "forbid"}

    stored: StoredReading
    alert: Optional[Alert] = None


class BatchItemError(BaseModel):
    """Why one reading in a batch was not ingested."""

    model_config = {"frozen": True, "extra": "forbid"}

    error_type: str
    message: str
    details: List[str] = Field(default_factory=list)


class BatchIngestResult(BaseModel):
    """
    Outcome of a batch ingestion.

    Attributes:
        results: One entry per input reading, None where it failed.
        errors: Failure per input index.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    results: List[Optional[IngestResult]]
    errors: Dict[int, BatchItemError] = Field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r is not None)

    @property
    def alerts(self) -> List[Alert]:
        return [r.alert for r in self.results if r is not None and r.alert is not None]


class IngestionCoordinator:
    """
    Composes validation, classification, persistence and alerting.

    Attributes:
        repository: Persistence collaborator.
        remote: Primary classifier.
        fallback: Local rule-based classifier used when remote is unavailable.
        alert_manager: Creates alerts for HIGH classifications.
        broadcaster: Publish handle, or None to disable broadcasting.
        config: Ingestion limits.
    """

    def __init__(
        self,
        repository: Repository,
        remote: RiskClassifier,
        fallback: RiskClassifier,
        alert_manager: AlertManager,
        broadcaster: Optional[Broadcaster] = None,
        config: Optional[IngestionConfig] = None,
    ) -> None:
        self.repository = repository
        self.remote = remote
        self.fallback = fallback
        self.alert_manager = alert_manager
        self.broadcaster = broadcaster
        self.config = config or IngestionConfig()

        self._ingested = 0
        self._fallbacks = 0

    async def _classify(
        self, reading: Reading
    ) -> Tuple[Classification, Optional[str], Optional[float]]:
        """
        Classify remotely, substituting the fallback on unavailability.

        Returns:
            Tuple of (classification, fallback_reason, remote_elapsed_ms).
            The last two are None when the remote result was used.
        """
        try:
            return await self.remote.classify(reading), None, None
        except PredictionUnavailableError as e:
            self._fallbacks += 1
            logger.warning(
                "fallback_classification_used",
                sensor_id=reading.sensor_id,
                classifier=self.fallback.name,
                attempts=e.attempts,
                remote_elapsed_ms=e.elapsed_ms,
                error=str(e),
            )
            classification = await self.fallback.classify(reading)
            return classification, str(e), e.elapsed_ms

    async def ingest(self, reading: Reading) -> Tuple[StoredReading, Optional[Alert]]:
        """
        Ingest one reading.

        Args:
            reading: The incoming reading.

        Returns:
            Tuple of the stored reading and the alert it raised, if any.

        Raises:
            ValidationError: If any feature is out of range.
            NotFoundError: If the sensor is unknown.
        """
        start_time = time.monotonic()

        validate_features(reading.features)

        sensor = await self.repository.find_sensor(reading.sensor_id)
        if sensor is None:
            raise NotFoundError("Sensor", reading.sensor_id)

        classification, fallback_reason, remote_elapsed_ms = await self._classify(reading)

        stored = StoredReading(
            reading=reading,
            classification=classification,
            processed_at=datetime.now(timezone.utc),
            fallback_reason=fallback_reason,
            remote_elapsed_ms=remote_elapsed_ms,
        )
        await self.repository.save_reading(stored)
        await self.repository.update_sensor_last_reading(reading.sensor_id, reading.timestamp)

        await self._publish(BroadcastTopic.READING_INGESTED, stored.model_dump(mode="json"))
        await self._publish(
            BroadcastTopic.RISK_CLASSIFIED,
            {
                "reading_id": stored.reading_id,
                "sensor_id": stored.sensor_id,
                "timestamp": reading.timestamp.isoformat(),
                "classification": classification.model_dump(mode="json"),
            },
        )

        alert: Optional[Alert] = None
        if classification.level.is_high:
            alert = await self.alert_manager.create_alert(stored, sensor)

        self._ingested += 1
        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "reading_ingested",
            reading_id=stored.reading_id,
            sensor_id=stored.sensor_id,
            level=classification.level.value,
            confidence=classification.confidence,
            classification_source=classification.source.value,
            alert_id=alert.alert_id if alert else None,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return stored, alert

    async def ingest_batch(self, readings: List[Reading]) -> BatchIngestResult:
        """
        Ingest up to max_batch_readings readings concurrently.

        A failing reading does not affect the others; its error is reported
        under its index.

        Args:
            readings: Incoming readings.

        Returns:
            BatchIngestResult: Per-item results and per-index errors.

        Raises:
            BatchSizeError: If the batch is empty or too large.
        """
        max_size = self.config.max_batch_readings
        if not readings or len(readings) > max_size:
            raise BatchSizeError(len(readings), max_size)

        outcomes = await asyncio.gather(
            *(self.ingest(reading) for reading in readings),
            return_exceptions=True,
        )

        results: List[Optional[IngestResult]] = []
        errors: Dict[int, BatchItemError] = {}
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                errors[index] = self._describe_error(index, readings[index], outcome)
                results.append(None)
            else:
                stored, alert = outcome
                results.append(IngestResult(stored=stored, alert=alert))

        batch = BatchIngestResult(results=results, errors=errors)
        logger.info(
            "batch_ingested",
            total=len(readings),
            succeeded=batch.succeeded,
            failed=len(errors),
            alerts=len(batch.alerts),
        )
        return batch

    def _describe_error(self, index: int, reading: Reading, error: Exception) -> BatchItemError:
        if isinstance(error, GeoSafeError):
            logger.warning(
                "batch_item_rejected",
                index=index,
                sensor_id=reading.sensor_id,
                error_type=type(error).__name__,
                error=str(error),
            )
        else:
            logger.error(
                "batch_item_failed",
                index=index,
                sensor_id=reading.sensor_id,
                error_type=type(error).__name__,
                error=str(error),
            )
        return BatchItemError(
            error_type=type(error).__name__,
            message=str(error),
            details=list(getattr(error, "errors", None) or []),
        )

    async def _publish(self, topic: BroadcastTopic, payload: Dict[str, Any]) -> None:
        """Publish an update; failures are logged and swallowed."""
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.publish(topic, payload)
        except Exception as e:
            logger.error("broadcast_failed", topic=topic.value, error=str(e))

    def get_stats(self) -> Dict[str, int]:
        """Ingestion counters, for diagnostics."""
        return {"ingested": self._ingested, "fallbacks": self._fallbacks}


async def create_ingestion_coordinator(
    repository: Repository,
    remote: RiskClassifier,
    fallback: RiskClassifier,
    alert_manager: AlertManager,
    broadcaster: Optional[Broadcaster] = None,
    config: Optional[IngestionConfig] = None,
) -> IngestionCoordinator:
    """Factory function to create an IngestionCoordinator."""
    return IngestionCoordinator(
        repository=repository,
        remote=remote,
        fallback=fallback,
        alert_manager=alert_manager,
        broadcaster=broadcaster,
        config=config,
    )
