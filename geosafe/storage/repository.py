"""
Repository implementation over PostgreSQL and Redis.

PostgreSQL is authoritative for every read that a decision depends on
(alert versions, escalation candidates, sensor existence). Redis mirrors
open alerts and the latest reading per sensor for live views and caches
sensor records. A Redis failure after a successful PostgreSQL write is
logged and does not fail the operation.
"""

from datetime import datetime
from typing import Dict, List, Optional

import structlog

from geosafe.exceptions import StaleAlertError
from geosafe.interfaces.repository import Repository
from geosafe.models.alerts import Alert, AlertPriority, EscalationClock
from geosafe.models.readings import StoredReading
from geosafe.models.sensors import Sensor
from geosafe.storage.postgres_client import PostgresClient
from geosafe.storage.redis_client import RedisClient, RedisClientError

logger = structlog.get_logger(__name__)


class StorageRepository(Repository):
    """
    Repository backed by PostgreSQL with a Redis mirror.

    Attributes:
        postgres: System-of-record client.
        redis: Mirror and cache client.

    Example:
        >>> repository = StorageRepository(postgres_client, redis_client)
        >>> await repository.save_alert(alert)
    """

    def __init__(self, postgres: PostgresClient, redis: RedisClient) -> None:
        self.postgres = postgres
        self.redis = redis

    # =========================================================================
    # READINGS
    # =========================================================================

    async def save_reading(self, stored: StoredReading) -> None:
        await self.postgres.insert_reading(stored)

        try:
            await self.redis.set_latest_reading(stored)
        except RedisClientError as e:
            logger.warning(
                "latest_reading_cache_sync_failed",
                sensor_id=stored.sensor_id,
                error=str(e),
            )

    async def find_latest_reading(self, sensor_id: str) -> Optional[StoredReading]:
        try:
            cached = await self.redis.get_latest_reading(sensor_id)
        except RedisClientError as e:
            logger.warning("latest_reading_cache_read_failed", sensor_id=sensor_id, error=str(e))
            cached = None

        if cached is not None:
            return cached
        return await self.postgres.query_latest_reading(sensor_id)

    # =========================================================================
    # SENSORS
    # =========================================================================

    async def find_sensor(self, sensor_id: str) -> Optional[Sensor]:
        try:
            cached = await self.redis.get_sensor(sensor_id)
        except RedisClientError as e:
            logger.warning("sensor_cache_read_failed", sensor_id=sensor_id, error=str(e))
            cached = None

        if cached is not None:
            return cached

        sensor = await self.postgres.get_sensor(sensor_id)
        if sensor is not None:
            try:
                await self.redis.set_sensor(sensor)
            except RedisClientError as e:
                logger.warning("sensor_cache_sync_failed", sensor_id=sensor_id, error=str(e))
        return sensor

    async def update_sensor_last_reading(self, sensor_id: str, timestamp: datetime) -> None:
        await self.postgres.update_sensor_last_reading(sensor_id, timestamp)

        try:
            await self.redis.invalidate_sensor(sensor_id)
        except RedisClientError as e:
            logger.warning("sensor_cache_invalidate_failed", sensor_id=sensor_id, error=str(e))

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def save_alert(self, alert: Alert) -> None:
        """
        Write an alert to PostgreSQL with a version check, then mirror it.

        Raises:
            StaleAlertError: If the alert already exists (version 0) or the
                stored version is not alert.version - 1.
        """
        if alert.version == 0:
            written = await self.postgres.insert_alert(alert)
        else:
            written = await self.postgres.update_alert_versioned(
                alert, expected_version=alert.version - 1
            )

        if not written:
            raise StaleAlertError(alert.alert_id, expected_version=alert.version - 1)

        try:
            await self.redis.set_alert(alert)
        except RedisClientError as e:
            logger.warning("alert_cache_sync_failed", alert_id=alert.alert_id, error=str(e))

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return await self.postgres.get_alert(alert_id)

    async def get_active_alerts(self) -> List[Alert]:
        return await self.postgres.query_open_alerts()

    async def find_active_alerts_needing_escalation(
        self,
        now: datetime,
        thresholds_minutes: Dict[AlertPriority, float],
        clock: EscalationClock = EscalationClock.TRIGGERED_AT,
    ) -> List[Alert]:
        candidates = await self.postgres.query_escalation_candidates()
        return [a for a in candidates if a.needs_escalation(now, thresholds_minutes, clock)]


async def create_storage_repository(
    postgres: PostgresClient,
    redis: RedisClient,
) -> StorageRepository:
    """
    Factory function to create a StorageRepository.

    Both clients must already be connected.
    """
    return StorageRepository(postgres=postgres, redis=redis)
