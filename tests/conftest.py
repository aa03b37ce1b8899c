"""
Shared fixtures for risk engine tests.

Provides an in-memory repository with the same version contract as the
storage-backed one, a broadcaster that records what it publishes, and the
sample sensor and readings used across test modules.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from geosafe.config.models import AlertsConfig
from geosafe.exceptions import StaleAlertError
from geosafe.interfaces.broadcaster import Broadcaster, BroadcastTopic
from geosafe.interfaces.repository import Repository
from geosafe.models.alerts import (
    Alert,
    AlertMetadata,
    AlertPriority,
    AlertStatus,
    EscalationClock,
)
from geosafe.models.readings import (
    Classification,
    ClassificationSource,
    Reading,
    RiskLevel,
    SensorFeatures,
    StoredReading,
)
from geosafe.models.sensors import GeoPoint, Sensor

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


NOW = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


class InMemoryRepository(Repository):
    """Repository kept in dicts, enforcing the alert version contract."""

    def __init__(self) -> None:
        self.readings: List[StoredReading] = []
        self.sensors: Dict[str, Sensor] = {}
        self.alerts: Dict[str, Alert] = {}
        self.alert_writes = 0

    def add_sensor(self, sensor: Sensor) -> None:
        self.sensors[sensor.sensor_id] = sensor

    async def save_reading(self, stored: StoredReading) -> None:
        self.readings.append(stored)

    async def find_latest_reading(self, sensor_id: str) -> Optional[StoredReading]:
        matching = [r for r in self.readings if r.sensor_id == sensor_id]
        if not matching:
            return None
        return max(matching, key=lambda r: r.reading.timestamp)

    async def find_sensor(self, sensor_id: str) -> Optional[Sensor]:
        return self.sensors.get(sensor_id)

    async def update_sensor_last_reading(self, sensor_id: str, timestamp: datetime) -> None:
        sensor = self.sensors.get(sensor_id)
        if sensor is None:
            return
        if sensor.last_reading_at is None or timestamp > sensor.last_reading_at:
            self.sensors[sensor_id] = sensor.model_copy(update={"last_reading_at": timestamp})

    async def save_alert(self, alert: Alert) -> None:
        stored = self.alerts.get(alert.alert_id)
        if alert.version == 0:
            if stored is not None:
                raise StaleAlertError(alert.alert_id, expected_version=-1)
        elif stored is None or stored.version != alert.version - 1:
            raise StaleAlertError(alert.alert_id, expected_version=alert.version - 1)
        self.alerts[alert.alert_id] = alert.model_copy(deep=True)
        self.alert_writes += 1

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        alert = self.alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert is not None else None

    async def get_active_alerts(self) -> List[Alert]:
        open_alerts = [a for a in self.alerts.values() if not a.is_terminal]
        return sorted(open_alerts, key=lambda a: a.triggered_at, reverse=True)

    async def find_active_alerts_needing_escalation(
        self,
        now: datetime,
        thresholds_minutes: Dict[AlertPriority, float],
        clock: EscalationClock = EscalationClock.TRIGGERED_AT,
    ) -> List[Alert]:
        return [
            a.model_copy(deep=True)
            for a in self.alerts.values()
            if a.needs_escalation(now, thresholds_minutes, clock)
        ]


class RecordingBroadcaster(Broadcaster):
    """Broadcaster that keeps every published message."""

    def __init__(self, fail: bool = False) -> None:
        self.messages: List[Tuple[BroadcastTopic, Dict[str, Any]]] = []
        self.fail = fail
        self.closed = False

    async def publish(self, topic: BroadcastTopic, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("broadcast channel down")
        self.messages.append((topic, payload))

    async def close(self) -> None:
        self.closed = True

    def topics(self) -> List[BroadcastTopic]:
        return [topic for topic, _ in self.messages]


# =============================================================================
# FEATURES AND READINGS
# =============================================================================


HIGH_RISK_FEATURES = dict(
    rainfall_mm=85.0,
    slope_angle=72.0,
    soil_saturation=0.85,
    vegetation_cover=0.15,
    earthquake_activity=3.2,
    proximity_to_water=25.0,
    landslide=0.75,
    soil_type_gravel=False,
    soil_type_sand=False,
    soil_type_silt=True,
)

LOW_RISK_FEATURES = dict(
    rainfall_mm=5.0,
    slope_angle=25.0,
    soil_saturation=0.2,
    vegetation_cover=0.8,
    earthquake_activity=0.1,
    proximity_to_water=500.0,
    landslide=0.1,
    soil_type_gravel=True,
    soil_type_sand=False,
    soil_type_silt=False,
)


def make_features(**overrides: Any) -> SensorFeatures:
    values = dict(LOW_RISK_FEATURES)
    values.update(overrides)
    return SensorFeatures(**values)


def make_reading(features: Dict[str, Any], sensor_id: str = "SENSOR_001", **kwargs: Any) -> Reading:
    return Reading(
        sensor_id=sensor_id,
        timestamp=kwargs.pop("timestamp", NOW),
        features=SensorFeatures(**features),
        **kwargs,
    )


def make_alert(
    priority: AlertPriority = AlertPriority.HIGH,
    triggered_at: datetime = NOW,
    status: AlertStatus = AlertStatus.ACTIVE,
    alert_id: str = "ALERT_1714557600000_SENSOR_001",
) -> Alert:
    return Alert(
        alert_id=alert_id,
        sensor_id="SENSOR_001",
        reading_id="reading-1",
        risk_level=RiskLevel.HIGH,
        confidence=0.9,
        priority=priority,
        status=status,
        triggered_at=triggered_at,
        metadata=AlertMetadata(model_version="2.1.0", processing_time_ms=120.0),
    )


def make_stored(reading: Reading, level: RiskLevel = RiskLevel.HIGH, confidence: float = 0.9) -> StoredReading:
    return StoredReading(
        reading=reading,
        classification=Classification(
            level=level,
            confidence=confidence,
            factors=["Slope_Angle", "Rainfall_mm", "Soil_Type_Silt"],
            model_version="2.1.0",
            source=ClassificationSource.REMOTE,
            processing_time_ms=120.0,
        ),
    )


@pytest.fixture
def sensor() -> Sensor:
    return Sensor(
        sensor_id="SENSOR_001",
        name="North wall extensometer",
        location=GeoPoint(longitude=115.86, latitude=-31.95),
        zone="ZONE_A",
    )


@pytest.fixture
def repository(sensor: Sensor) -> InMemoryRepository:
    repo = InMemoryRepository()
    repo.add_sensor(sensor)
    return repo


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def alerts_config() -> AlertsConfig:
    return AlertsConfig()


@pytest.fixture
def high_risk_reading() -> Reading:
    return make_reading(HIGH_RISK_FEATURES)


@pytest.fixture
def low_risk_reading() -> Reading:
    return make_reading(LOW_RISK_FEATURES)


@pytest.fixture
def minutes_ago():
    def _minutes_ago(minutes: float) -> datetime:
        return NOW - timedelta(minutes=minutes)

    return _minutes_ago
