"""
Async PostgreSQL client for durable risk-engine records.

PostgreSQL is the system of record for sensors, stored readings and alerts.
Alert writes carry a version check so that concurrent writers from different
processes cannot silently overwrite each other.

Tables:
    - sensors: registered sensors with thresholds and last report time
    - readings: every ingested reading with its classification
    - alerts: lifecycle columns for filtering plus the full JSON document

Example:
    >>> client = PostgresClient(PostgresConnectionConfig())
    >>> await client.connect()
    >>> await client.ensure_schema()
    >>> await client.insert_reading(stored)
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime
from typing import Any, List, Optional

import asyncpg
import structlog
from asyncpg import Connection, Pool, Record
from asyncpg.exceptions import (
    ConnectionDoesNotExistError,
    InterfaceError,
    PostgresError,
    TooManyConnectionsError,
)

from geosafe.config.models import PostgresConnectionConfig
from geosafe.models.alerts import Alert, AlertStatus, MAX_ESCALATION_LEVEL
from geosafe.models.readings import StoredReading
from geosafe.models.sensors import Sensor

logger = structlog.get_logger(__name__)


SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS sensors (
        sensor_id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL,
        zone TEXT,
        document JSONB NOT NULL,
        last_reading_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS readings (
        reading_id TEXT PRIMARY KEY,
        sensor_id TEXT NOT NULL,
        timestamp TIMESTAMPTZ NOT NULL,
        source TEXT NOT NULL,
        risk_level TEXT NOT NULL,
        confidence DOUBLE PRECISION NOT NULL,
        classification_source TEXT NOT NULL,
        processed_at TIMESTAMPTZ NOT NULL,
        document JSONB NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS readings_sensor_time_idx
        ON readings (sensor_id, timestamp DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS alerts (
        alert_id TEXT PRIMARY KEY,
        sensor_id TEXT NOT NULL,
        status TEXT NOT NULL,
        priority TEXT NOT NULL,
        escalation_level INTEGER NOT NULL DEFAULT 0,
        triggered_at TIMESTAMPTZ NOT NULL,
        version INTEGER NOT NULL,
        document JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS alerts_open_idx
        ON alerts (status, triggered_at DESC)
    """,
]

_OPEN_STATUSES = [AlertStatus.ACTIVE.value, AlertStatus.ACKNOWLEDGED.value]

# asyncpg errors worth another attempt; anything else surfaces at once
_TRANSIENT_ERRORS = (PostgresError, ConnectionDoesNotExistError, InterfaceError)


class PostgresClientError(Exception):
    """Base class for failures raised by PostgresClient."""

    pass


class PostgresConnectionException(PostgresClientError):
    """The pool could not be opened, was exhausted, or was used before connect()."""

    pass


class PostgresOperationError(PostgresClientError):
    """A statement kept failing after every retry."""

    pass


def _affected_one(status: str) -> bool:
    # asyncpg returns the command tag, e.g. "UPDATE 1" or "INSERT 0 1"
    return status.endswith(" 1")


def _alerts(records: List[Record]) -> List[Alert]:
    return [Alert.model_validate(r["document"]) for r in records]


class PostgresClient:
    """
    Durable storage for sensors, readings and alerts.

    All statements go through _execute_with_retry, which retries transient
    asyncpg failures with a linear backoff and then raises
    PostgresOperationError.
    """

    MAX_RETRIES = 3
    RETRY_DELAY = 0.5

    def __init__(self, config: PostgresConnectionConfig) -> None:
        self.config = config
        self._pool: Optional[Pool] = None

        logger.info(
            "postgres_client_created",
            url=self._sanitize_url(config.url),
            pool_size=config.pool_size,
        )

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Mask the password in a DSN before it reaches the logs."""
        credentials, sep, host = url.rpartition("@")
        if not sep:
            return url
        scheme_user, colon, _password = credentials.rpartition(":")
        if not colon or scheme_user.endswith("/"):
            return url
        return f"{scheme_user}:***@{host}"

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """
        Open the pool and check it with a trivial query.

        Raises:
            PostgresConnectionException: If PostgreSQL is unreachable.
        """
        if self._pool is not None:
            return

        safe_url = self._sanitize_url(self.config.url)
        try:
            pool = await asyncpg.create_pool(
                dsn=self.config.url,
                min_size=1,
                max_size=self.config.pool_size + self.config.max_overflow,
                command_timeout=self.config.pool_timeout,
                init=self._prepare_connection,
            )
            await pool.fetchval("SELECT 1")
        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            logger.error("postgres_connect_failed", url=safe_url, error=str(e))
            raise PostgresConnectionException(
                f"Cannot reach PostgreSQL at {safe_url}: {e}"
            ) from e

        self._pool = pool
        logger.info("postgres_connected", url=safe_url)

    @staticmethod
    async def _prepare_connection(conn: Connection) -> None:
        # Timestamps come back in UTC and JSONB columns map to plain dicts
        await conn.execute("SET timezone = 'UTC'")
        await conn.set_type_codec(
            "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )

    async def disconnect(self) -> None:
        """Close the pool. Idempotent."""
        pool, self._pool = self._pool, None
        if pool is not None:
            try:
                await pool.close()
            except (PostgresError, OSError) as e:
                logger.warning("postgres_release_failed", error=str(e))
        logger.info("postgres_disconnected")

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            await self._pool.fetchval("SELECT 1")
        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            logger.warning("postgres_ping_failed", error=str(e))
            return False
        return True

    async def _run(self, method: str, query: str, *args: Any) -> Any:
        """
        Run one statement on a pooled connection.

        Args:
            method: asyncpg Connection method, one of execute/fetch/fetchrow.
            query: SQL with positional placeholders.

        Raises:
            PostgresConnectionException: Not connected, or the pool is exhausted.
        """
        if self._pool is None:
            raise PostgresConnectionException("PostgresClient.connect() has not been called")
        try:
            async with self._pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except TooManyConnectionsError as e:
            logger.error("postgres_pool_exhausted", error=str(e))
            raise PostgresConnectionException(f"Connection pool exhausted: {e}") from e

    async def _execute_with_retry(self, operation: str, method: str, query: str, *args: Any) -> Any:
        """
        _run with retries for transient errors.

        Raises:
            PostgresOperationError: When every attempt failed.
        """
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                return await self._run(method, query, *args)
            except _TRANSIENT_ERRORS as e:
                if attempt == self.MAX_RETRIES:
                    logger.error("postgres_operation_failed", operation=operation, error=str(e))
                    raise PostgresOperationError(
                        f"{operation} failed after {attempt} attempts: {e}"
                    ) from e
                logger.warning(
                    "postgres_operation_retry",
                    operation=operation,
                    attempt=attempt,
                    error=str(e),
                )
                await asyncio.sleep(self.RETRY_DELAY * attempt)

    async def ensure_schema(self) -> None:
        """Create tables and indexes that do not exist yet."""
        if self._pool is None:
            raise PostgresConnectionException("PostgresClient.connect() has not been called")

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)

        logger.info("postgres_schema_ready", statements=len(SCHEMA_STATEMENTS))

    # =========================================================================
    # SENSORS
    # =========================================================================

    async def upsert_sensor(self, sensor: Sensor) -> None:
        await self._execute_with_retry(
            "upsert_sensor",
            "execute",
            """
            INSERT INTO sensors (sensor_id, name, status, zone, document, last_reading_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (sensor_id) DO UPDATE SET
                name = EXCLUDED.name,
                status = EXCLUDED.status,
                zone = EXCLUDED.zone,
                document = EXCLUDED.document,
                last_reading_at = EXCLUDED.last_reading_at,
                updated_at = NOW()
            """,
            sensor.sensor_id,
            sensor.name,
            sensor.status.value,
            sensor.zone,
            sensor.model_dump(mode="json"),
            sensor.last_reading_at,
        )
        logger.info("sensor_upserted", sensor_id=sensor.sensor_id)

    async def get_sensor(self, sensor_id: str) -> Optional[Sensor]:
        """Sensor by ID, with last_reading_at taken from its own column."""
        record = await self._execute_with_retry(
            "get_sensor",
            "fetchrow",
            "SELECT document, last_reading_at FROM sensors WHERE sensor_id = $1",
            sensor_id,
        )
        if record is None:
            return None
        sensor = Sensor.model_validate(record["document"])
        return sensor.model_copy(update={"last_reading_at": record["last_reading_at"]})

    async def update_sensor_last_reading(self, sensor_id: str, timestamp: datetime) -> bool:
        """
        Advance a sensor's last report time.

        The stored value never moves backwards, so out-of-order readings
        leave it at the newest timestamp seen.

        Returns:
            bool: True if the sensor exists.
        """
        status = await self._execute_with_retry(
            "update_sensor_last_reading",
            "execute",
            """
            UPDATE sensors
            SET last_reading_at = GREATEST(COALESCE(last_reading_at, $2), $2),
                updated_at = NOW()
            WHERE sensor_id = $1
            """,
            sensor_id,
            timestamp,
        )
        return _affected_one(status)

    # =========================================================================
    # READINGS
    # =========================================================================

    async def insert_reading(self, stored: StoredReading) -> None:
        """Store a classified reading. Re-inserting the same reading_id is a no-op."""
        started = time.monotonic()
        classification = stored.classification

        await self._execute_with_retry(
            "insert_reading",
            "execute",
            """
            INSERT INTO readings (
                reading_id, sensor_id, timestamp, source,
                risk_level, confidence, classification_source,
                processed_at, document
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (reading_id) DO NOTHING
            """,
            stored.reading_id,
            stored.sensor_id,
            stored.reading.timestamp,
            stored.reading.source.value,
            classification.level.value,
            classification.confidence,
            classification.source.value,
            stored.processed_at,
            stored.model_dump(mode="json"),
        )

        logger.debug(
            "reading_inserted",
            reading_id=stored.reading_id,
            sensor_id=stored.sensor_id,
            elapsed_ms=round((time.monotonic() - started) * 1000, 2),
        )

    async def query_latest_reading(self, sensor_id: str) -> Optional[StoredReading]:
        record = await self._execute_with_retry(
            "query_latest_reading",
            "fetchrow",
            """
            SELECT document FROM readings
            WHERE sensor_id = $1
            ORDER BY timestamp DESC
            LIMIT 1
            """,
            sensor_id,
        )
        return StoredReading.model_validate(record["document"]) if record is not None else None

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def insert_alert(self, alert: Alert) -> bool:
        """
        Insert a new alert.

        Returns:
            bool: False if an alert with the same ID already exists.
        """
        status = await self._execute_with_retry(
            "insert_alert",
            "execute",
            """
            INSERT INTO alerts (
                alert_id, sensor_id, status, priority,
                escalation_level, triggered_at, version, document
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (alert_id) DO NOTHING
            """,
            alert.alert_id,
            alert.sensor_id,
            alert.status.value,
            alert.priority.value,
            alert.escalation.level,
            alert.triggered_at,
            alert.version,
            alert.model_dump(mode="json"),
        )
        inserted = _affected_one(status)
        logger.info(
            "alert_inserted" if inserted else "alert_insert_conflict",
            alert_id=alert.alert_id,
            priority=alert.priority.value,
        )
        return inserted

    async def update_alert_versioned(self, alert: Alert, expected_version: int) -> bool:
        """
        Replace an alert only if the stored row still has expected_version.

        Args:
            alert: The updated alert, already carrying its new version.
            expected_version: Version the stored row must have right now.

        Returns:
            bool: False if the row is missing or another writer got there first.
        """
        started = time.monotonic()
        status = await self._execute_with_retry(
            "update_alert_versioned",
            "execute",
            """
            UPDATE alerts
            SET status = $3,
                priority = $4,
                escalation_level = $5,
                version = $6,
                document = $7,
                updated_at = NOW()
            WHERE alert_id = $1 AND version = $2
            """,
            alert.alert_id,
            expected_version,
            alert.status.value,
            alert.priority.value,
            alert.escalation.level,
            alert.version,
            alert.model_dump(mode="json"),
        )
        updated = _affected_one(status)
        logger.info(
            "alert_updated" if updated else "alert_update_conflict",
            alert_id=alert.alert_id,
            status=alert.status.value,
            version=alert.version,
            elapsed_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return updated

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        record = await self._execute_with_retry(
            "get_alert",
            "fetchrow",
            "SELECT document FROM alerts WHERE alert_id = $1",
            alert_id,
        )
        return Alert.model_validate(record["document"]) if record is not None else None

    async def query_open_alerts(self) -> List[Alert]:
        """ACTIVE and ACKNOWLEDGED alerts, newest first."""
        records = await self._execute_with_retry(
            "query_open_alerts",
            "fetch",
            """
            SELECT document FROM alerts
            WHERE status = ANY($1::text[])
            ORDER BY triggered_at DESC
            """,
            _OPEN_STATUSES,
        )
        return _alerts(records)

    async def query_escalation_candidates(self) -> List[Alert]:
        """
        ACTIVE alerts below the top escalation level, oldest first.

        Age thresholds are applied by the caller.
        """
        records = await self._execute_with_retry(
            "query_escalation_candidates",
            "fetch",
            """
            SELECT document FROM alerts
            WHERE status = $1 AND escalation_level < $2
            ORDER BY triggered_at ASC
            """,
            AlertStatus.ACTIVE.value,
            MAX_ESCALATION_LEVEL,
        )
        return _alerts(records)
