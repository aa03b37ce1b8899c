"""
Shared Pydantic data models for the risk engine.

Modules:
    readings: Sensor features, readings and classifications
    sensors: Sensor identity, location and thresholds
    alerts: Alert entity and lifecycle transitions

Example:
    >>> from geosafe.models import Reading, SensorFeatures, Classification
    >>> from geosafe.models import Alert, AlertPriority, AlertStatus
"""

# Reading models
from geosafe.models.readings import (
    FACTOR_FEATURE_NAMES,
    FEATURE_FACTOR_NAMES,
    Classification,
    ClassificationSource,
    Reading,
    ReadingSource,
    RiskLevel,
    SensorFeatures,
    StoredReading,
)

# Sensor models
from geosafe.models.sensors import (
    DEFAULT_ALERT_THRESHOLDS,
    GeoPoint,
    Sensor,
    SensorStatus,
)

# Alert models
from geosafe.models.alerts import (
    MAX_ESCALATION_LEVEL,
    AffectedArea,
    Alert,
    AlertAction,
    AlertMetadata,
    AlertPriority,
    AlertStatus,
    AlertType,
    Escalation,
    EscalationClock,
    RiskZone,
    TriggerFactor,
    build_alert_id,
)

__all__ = [
    # Readings
    "FEATURE_FACTOR_NAMES",
    "FACTOR_FEATURE_NAMES",
    "RiskLevel",
    "ReadingSource",
    "ClassificationSource",
    "SensorFeatures",
    "Reading",
    "Classification",
    "StoredReading",
    # Sensors
    "DEFAULT_ALERT_THRESHOLDS",
    "SensorStatus",
    "GeoPoint",
    "Sensor",
    # Alerts
    "MAX_ESCALATION_LEVEL",
    "AlertStatus",
    "AlertPriority",
    "AlertType",
    "RiskZone",
    "EscalationClock",
    "AffectedArea",
    "TriggerFactor",
    "AlertAction",
    "Escalation",
    "AlertMetadata",
    "Alert",
    "build_alert_id",
]
