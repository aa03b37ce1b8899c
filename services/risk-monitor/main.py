"""
Risk monitor process.

Consumes sensor readings from a Redis channel and pushes each one through
the ingestion pipeline: classify (remote, else rule table), store, alert on
HIGH risk, broadcast. Alongside that it runs the periodic escalation sweep.
If the reading subscription is lost the process exits with status 1.

Usage:
    python services/risk-monitor/main.py

Environment Variables:
    CONFIG_PATH: Config directory (default: config)
    PREDICTION_SERVICE_URL, PREDICTION_SERVICE_TIMEOUT: Prediction service
    REDIS_URL, DATABASE_URL: Storage connections
    LOG_LEVEL: Overrides features.yaml
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import structlog

# Allow running straight from a checkout
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from geosafe.alerting import AlertManager, EscalationSweeper
from geosafe.broadcast import RedisBroadcaster
from geosafe.classification import FallbackClassifier, RemoteClassifier
from geosafe.ingestion import IngestionCoordinator, ReadingConsumer
from geosafe.prediction import PredictionClient, create_prediction_client
from geosafe.services import ServiceRunner, setup_logging
from geosafe.storage import StorageRepository

logger = structlog.get_logger(__name__)


class RiskMonitorService(ServiceRunner):
    """Reading consumer plus escalation sweeper, sharing one AlertManager."""

    def __init__(self, config_path: str = "config") -> None:
        super().__init__(config_path)
        self.prediction_client: Optional[PredictionClient] = None
        self.broadcaster: Optional[RedisBroadcaster] = None
        self.sweeper: Optional[EscalationSweeper] = None
        self.coordinator: Optional[IngestionCoordinator] = None
        self.consumer: Optional[ReadingConsumer] = None

    @property
    def service_name(self) -> str:
        return "risk-monitor"

    async def _initialize(self) -> None:
        if self.config is None or self.redis_client is None or self.postgres_client is None:
            raise RuntimeError("Storage must be connected before components are built")

        self.prediction_client = await create_prediction_client(self.config.prediction)
        if not await self.prediction_client.health_check():
            # Not fatal: the fallback classifies until the service comes back
            self.logger.warning(
                "prediction_service_unreachable",
                base_url=self.prediction_client.base_url,
            )

        repository = StorageRepository(self.postgres_client, self.redis_client)
        self.broadcaster = RedisBroadcaster(self.redis_client)
        alert_manager = AlertManager(
            repository=repository,
            broadcaster=self.broadcaster,
            config=self.config.alerts,
        )

        self.sweeper = EscalationSweeper(
            manager=alert_manager,
            repository=repository,
            config=self.config.alerts.escalation,
        )
        self.coordinator = IngestionCoordinator(
            repository=repository,
            remote=RemoteClassifier(self.prediction_client),
            fallback=FallbackClassifier(),
            alert_manager=alert_manager,
            broadcaster=self.broadcaster,
            config=self.config.features.ingestion,
        )

        ingestion = self.config.features.ingestion
        self.consumer = ReadingConsumer(
            self.coordinator,
            subscribe=self.redis_client.subscribe,
            channel=ingestion.readings_channel,
            max_in_flight=ingestion.max_in_flight_readings,
        )

        self.logger.info(
            "risk_monitor_ready",
            readings_channel=ingestion.readings_channel,
            max_in_flight_readings=ingestion.max_in_flight_readings,
            sweep_interval_seconds=self.config.alerts.escalation.sweep_interval_seconds,
        )

    async def _run(self) -> None:
        if self.sweeper is None or self.consumer is None:
            raise RuntimeError("_initialize() has not completed")

        sweep = asyncio.create_task(self.sweeper.run(self.shutdown_event))
        try:
            await self.consumer.run(self.shutdown_event)
        finally:
            # Also stops the sweep when the consumer fails
            self.shutdown_event.set()
            await sweep

    async def _cleanup(self) -> None:
        if self.consumer is not None:
            self.logger.info("consumer_totals", **self.consumer.get_stats())
        if self.coordinator is not None:
            self.logger.info("ingestion_totals", **self.coordinator.get_stats())
        if self.broadcaster is not None:
            await self.broadcaster.close()
        if self.prediction_client is not None:
            await self.prediction_client.close()


async def main() -> None:
    setup_logging()

    config_path = os.getenv("CONFIG_PATH", "config")
    logger.info("risk_monitor_starting", config_path=config_path)

    try:
        await RiskMonitorService(config_path=config_path).run()
    except Exception as e:
        logger.error("risk_monitor_failed", error_type=type(e).__name__, error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
