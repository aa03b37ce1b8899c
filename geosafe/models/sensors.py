"""
Sensor models.

Sensors are owned by the surrounding platform; the risk engine only reads
them to annotate alerts with location and configured thresholds.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


DEFAULT_ALERT_THRESHOLDS: Dict[str, float] = {
    "Rainfall_mm": 50.0,
    "Slope_Angle": 60.0,
    "Soil_Saturation": 0.7,
    "Vegetation_Cover": 0.3,
    "Earthquake_Activity": 2.0,
    "Proximity_to_Water": 100.0,
    "Landslide": 0.5,
}


class SensorStatus(str, Enum):
    """Operational status of a sensor."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"
    ERROR = "ERROR"


class GeoPoint(BaseModel):
    """WGS84 point, longitude first."""

    model_config = {"frozen": True, "extra": "forbid"}

    longitude: float = Field(..., ge=-180.0, le=180.0)
    latitude: float = Field(..., ge=-90.0, le=90.0)


class Sensor(BaseModel):
    """
    A deployed sensor.

    Attributes:
        sensor_id: Unique sensor identifier.
        name: Human-readable name.
        location: Sensor position.
        zone: Mine grid zone the sensor sits in.
        status: Operational status.
        alert_thresholds: Configured threshold per factor name.
        last_reading_at: When the sensor last reported.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    sensor_id: str = Field(..., description="Unique sensor identifier", min_length=1)
    name: str = Field(default="", description="Human-readable name")
    location: Optional[GeoPoint] = Field(default=None, description="Sensor position")
    zone: Optional[str] = Field(default=None, description="Mine grid zone")
    status: SensorStatus = Field(default=SensorStatus.ACTIVE)
    alert_thresholds: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ALERT_THRESHOLDS),
        description="Configured threshold per factor name",
    )
    last_reading_at: Optional[datetime] = Field(default=None)

    def threshold_for(self, factor: str) -> float:
        """Get the configured threshold for a factor, 0.0 when unset."""
        return self.alert_thresholds.get(factor, 0.0)
