"""
Async Redis client for hot risk-engine state.

Mirrors open alerts with their indexes for live operator views, caches the
latest reading per sensor, and caches sensor records. Also carries pub/sub
for live updates. PostgreSQL stays the system of record.

Key Patterns:
    - Alerts: `alert:{alert_id}` (string), `alerts:open` (set),
              `alerts:by_priority:{priority}` (set), `alerts:by_sensor:{sensor_id}` (set)
    - Latest readings: `reading:latest:{sensor_id}` (string with TTL)
    - Sensors: `sensor:{sensor_id}` (string)
    - Pub/Sub channels: `updates:{topic}`

Example:
    >>> from geosafe.config.models import RedisConnectionConfig
    >>> from geosafe.storage.redis_client import RedisClient
    >>>
    >>> redis = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
    >>> await redis.connect()
    >>> await redis.set_sensor(sensor)
    >>> await redis.publish(redis.channel_for("alert-created"), payload)
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from geosafe.config.models import RedisConnectionConfig, RedisStorageConfig
from geosafe.models.alerts import Alert, AlertPriority
from geosafe.models.readings import StoredReading
from geosafe.models.sensors import Sensor

logger = structlog.get_logger(__name__)


class RedisClientError(Exception):
    """Base class for failures raised by RedisClient."""

    pass


class RedisConnectionException(RedisClientError):
    """The client could not reach Redis or was used before connect()."""

    pass


class RedisOperationError(RedisClientError):
    """A command against a connected Redis failed."""

    pass


class RedisClient:
    """
    Redis access for the alert mirror, reading and sensor caches, and pub/sub.

    Every command method raises RedisConnectionException when called before
    connect(), and RedisOperationError when Redis rejects the command.

    Attributes:
        config: Connection settings.
        storage_config: Cache TTLs.
    """

    KEY_ALERT = "alert"
    KEY_ALERTS_OPEN = "alerts:open"
    KEY_ALERTS_BY_PRIORITY = "alerts:by_priority"
    KEY_ALERTS_BY_SENSOR = "alerts:by_sensor"
    KEY_LATEST_READING = "reading:latest"
    KEY_SENSOR = "sensor"

    CHANNEL_PREFIX = "updates"

    def __init__(
        self,
        config: RedisConnectionConfig,
        storage_config: Optional[RedisStorageConfig] = None,
    ) -> None:
        self.config = config
        self.storage_config = storage_config or RedisStorageConfig()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None  # type: ignore[type-arg]

        logger.info(
            "redis_client_created",
            url=config.url,
            db=config.db,
            pool_size=config.max_connections,
        )

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    async def connect(self) -> None:
        """
        Open the connection pool and verify it with a PING.

        Raises:
            RedisConnectionException: If Redis is unreachable.
        """
        if self._redis is not None:
            return

        pool = ConnectionPool.from_url(
            self.config.url,
            db=self.config.db,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.socket_timeout,
            socket_connect_timeout=self.config.socket_timeout,
            decode_responses=True,
        )
        redis = Redis(connection_pool=pool)

        try:
            await redis.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            await pool.aclose()
            logger.error("redis_connect_failed", url=self.config.url, error=str(e))
            raise RedisConnectionException(
                f"Cannot reach Redis at {self.config.url}: {e}"
            ) from e

        self._pool = pool
        self._redis = redis
        logger.info("redis_connected", url=self.config.url, db=self.config.db)

    async def disconnect(self) -> None:
        """Release the client and its pool. Idempotent."""
        redis, pool = self._redis, self._pool
        self._redis = None
        self._pool = None

        for name, resource in (("client", redis), ("pool", pool)):
            if resource is None:
                continue
            try:
                await resource.aclose()
            except RedisError as e:
                logger.warning("redis_release_failed", resource=name, error=str(e))

        logger.info("redis_disconnected")

    async def ping(self) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        if self._redis is None:
            raise RedisConnectionException("RedisClient.connect() has not been called")
        return self._redis

    @asynccontextmanager
    async def _operation(self, event: str, **context: Any) -> AsyncIterator[Redis]:  # type: ignore[type-arg]
        """
        Yield the live client, translating RedisError into RedisOperationError.

        Args:
            event: Log event emitted on failure.
            **context: Extra log fields identifying the target.
        """
        redis = self._require_connection()
        try:
            yield redis
        except RedisError as e:
            logger.error(event, error=str(e), **context)
            target = ", ".join(f"{k}={v}" for k, v in context.items())
            raise RedisOperationError(f"{event} ({target}): {e}") from e

    # =========================================================================
    # ALERT MIRROR
    # =========================================================================

    def _alert_key(self, alert_id: str) -> str:
        return f"{self.KEY_ALERT}:{alert_id}"

    def _alerts_by_priority_key(self, priority: AlertPriority) -> str:
        return f"{self.KEY_ALERTS_BY_PRIORITY}:{priority.value}"

    def _alerts_by_sensor_key(self, sensor_id: str) -> str:
        return f"{self.KEY_ALERTS_BY_SENSOR}:{sensor_id}"

    async def set_alert(self, alert: Alert) -> None:
        """
        Mirror an alert and keep its index sets in step.

        An open alert sits in `alerts:open`, its sensor set and exactly one
        priority set. A closed alert is dropped from all of them and its
        document expires after closed_alert_ttl_seconds.
        """
        alert_id = alert.alert_id
        document = alert.model_dump_json()

        async with self._operation("alert_mirror_failed", alert_id=alert_id) as redis:
            async with redis.pipeline(transaction=True) as pipe:
                for priority in AlertPriority:
                    if alert.is_terminal or priority != alert.priority:
                        pipe.srem(self._alerts_by_priority_key(priority), alert_id)

                if alert.is_terminal:
                    pipe.set(
                        self._alert_key(alert_id),
                        document,
                        ex=self.storage_config.closed_alert_ttl_seconds,
                    )
                    pipe.srem(self.KEY_ALERTS_OPEN, alert_id)
                    pipe.srem(self._alerts_by_sensor_key(alert.sensor_id), alert_id)
                else:
                    pipe.set(self._alert_key(alert_id), document)
                    pipe.sadd(self.KEY_ALERTS_OPEN, alert_id)
                    pipe.sadd(self._alerts_by_priority_key(alert.priority), alert_id)
                    pipe.sadd(self._alerts_by_sensor_key(alert.sensor_id), alert_id)

                await pipe.execute()

        logger.debug(
            "alert_mirrored",
            alert_id=alert_id,
            status=alert.status.value,
            version=alert.version,
        )

    # =========================================================================
    # READING AND SENSOR CACHES
    # =========================================================================

    def _latest_reading_key(self, sensor_id: str) -> str:
        return f"{self.KEY_LATEST_READING}:{sensor_id}"

    def _sensor_key(self, sensor_id: str) -> str:
        return f"{self.KEY_SENSOR}:{sensor_id}"

    async def set_latest_reading(self, stored: StoredReading) -> None:
        """Cache a sensor's newest reading for latest_reading_ttl_seconds."""
        async with self._operation("latest_reading_cache_failed", sensor_id=stored.sensor_id) as redis:
            await redis.set(
                self._latest_reading_key(stored.sensor_id),
                stored.model_dump_json(),
                ex=self.storage_config.latest_reading_ttl_seconds,
            )

    async def get_latest_reading(self, sensor_id: str) -> Optional[StoredReading]:
        """Cached newest reading for a sensor, or None if absent or expired."""
        async with self._operation("latest_reading_lookup_failed", sensor_id=sensor_id) as redis:
            raw = await redis.get(self._latest_reading_key(sensor_id))
        return StoredReading.model_validate_json(raw) if raw is not None else None

    async def set_sensor(self, sensor: Sensor) -> None:
        async with self._operation("sensor_cache_failed", sensor_id=sensor.sensor_id) as redis:
            await redis.set(self._sensor_key(sensor.sensor_id), sensor.model_dump_json())

    async def get_sensor(self, sensor_id: str) -> Optional[Sensor]:
        async with self._operation("sensor_lookup_failed", sensor_id=sensor_id) as redis:
            raw = await redis.get(self._sensor_key(sensor_id))
        return Sensor.model_validate_json(raw) if raw is not None else None

    async def invalidate_sensor(self, sensor_id: str) -> None:
        """Drop a cached sensor so the next lookup goes to PostgreSQL."""
        async with self._operation("sensor_invalidate_failed", sensor_id=sensor_id) as redis:
            await redis.delete(self._sensor_key(sensor_id))

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    def channel_for(self, topic: str) -> str:
        return f"{self.CHANNEL_PREFIX}:{topic}"

    async def publish(self, channel: str, message: Dict[str, Any]) -> int:
        """
        Publish a JSON-encoded message.

        Returns:
            int: How many subscribers received it.
        """
        async with self._operation("publish_failed", channel=channel) as redis:
            receivers = await redis.publish(channel, json.dumps(message))
        logger.debug("published", channel=channel, receivers=receivers)
        return int(receivers)

    @asynccontextmanager
    async def subscribe(
        self, channels: List[str]
    ) -> AsyncIterator[AsyncIterator[Dict[str, Any]]]:
        """
        Listen on channels for the lifetime of the context.

        Yields an async iterator of `{"channel", "data"}` dicts with `data`
        JSON-decoded. Undecodable payloads are logged and dropped.

        Example:
            >>> async with redis.subscribe(["readings:incoming"]) as messages:
            ...     async for message in messages:
            ...         handle(message["data"])
        """
        redis = self._require_connection()
        pubsub: PubSub = redis.pubsub()

        async def decoded() -> AsyncIterator[Dict[str, Any]]:
            async for raw in pubsub.listen():
                if raw["type"] != "message":
                    continue
                try:
                    data = json.loads(raw["data"])
                except json.JSONDecodeError as e:
                    logger.warning("pubsub_payload_invalid", channel=raw["channel"], error=str(e))
                    continue
                yield {"channel": raw["channel"], "data": data}

        await pubsub.subscribe(*channels)
        logger.info("pubsub_listening", channels=channels)
        try:
            yield decoded()
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()
            logger.info("pubsub_closed", channels=channels)
