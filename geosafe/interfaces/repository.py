"""
Abstract persistence interface for the risk engine.

The lifecycle engine and ingestion coordinator depend only on this contract,
not on any particular storage engine. StorageRepository implements it over
Redis and PostgreSQL; tests use an in-memory implementation.

Alert writes carry a version. An implementation must reject a write whose
version is not exactly one more than the stored version (or 0 for a new
alert) by raising StaleAlertError, so that concurrent transitions of the
same alert can never silently overwrite each other.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from geosafe.models.alerts import Alert, AlertPriority, EscalationClock
from geosafe.models.readings import StoredReading
from geosafe.models.sensors import Sensor


class Repository(ABC):
    """
    Persistence contract for readings, alerts and sensor lookups.

    Example:
        >>> sensor = await repository.find_sensor("SENSOR_001")
        >>> await repository.save_reading(stored)
        >>> await repository.save_alert(alert)
    """

    @abstractmethod
    async def save_reading(self, stored: StoredReading) -> None:
        """
        Persist a reading together with its classification.

        Args:
            stored: The reading/classification pair.
        """
        pass

    @abstractmethod
    async def find_latest_reading(self, sensor_id: str) -> Optional[StoredReading]:
        """
        Get the most recent stored reading for a sensor.

        Args:
            sensor_id: Sensor identifier.

        Returns:
            Optional[StoredReading]: Latest reading, or None if none recorded.
        """
        pass

    @abstractmethod
    async def find_sensor(self, sensor_id: str) -> Optional[Sensor]:
        """
        Look up a sensor.

        Args:
            sensor_id: Sensor identifier.

        Returns:
            Optional[Sensor]: The sensor, or None if unknown.
        """
        pass

    @abstractmethod
    async def update_sensor_last_reading(
        self, sensor_id: str, timestamp: datetime
    ) -> None:
        """
        Record when a sensor last reported.

        Args:
            sensor_id: Sensor identifier.
            timestamp: Timestamp of the reading just ingested.
        """
        pass

    @abstractmethod
    async def save_alert(self, alert: Alert) -> None:
        """
        Insert or update an alert with a version check.

        Args:
            alert: The alert to write. version 0 inserts; version n updates
                a stored alert at version n - 1.

        Raises:
            StaleAlertError: If the stored version does not match.
        """
        pass

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        """
        Get an alert by ID.

        Args:
            alert_id: The unique alert identifier.

        Returns:
            Optional[Alert]: The alert, or None if not found.
        """
        pass

    @abstractmethod
    async def get_active_alerts(self) -> List[Alert]:
        """
        Get all alerts in a non-terminal state, newest first.

        Returns:
            List[Alert]: ACTIVE and ACKNOWLEDGED alerts.
        """
        pass

    @abstractmethod
    async def find_active_alerts_needing_escalation(
        self,
        now: datetime,
        thresholds_minutes: Dict[AlertPriority, float],
        clock: EscalationClock = EscalationClock.TRIGGERED_AT,
    ) -> List[Alert]:
        """
        Get ACTIVE alerts below the maximum level that are past their threshold.

        Args:
            now: Current time.
            thresholds_minutes: Escalation threshold per priority.
            clock: Reference point used to age alerts.

        Returns:
            List[Alert]: Alerts due for escalation.
        """
        pass
