"""
Reading and classification data models.

This module defines the sensor feature vector, the timestamped reading that
carries it, and the risk classification produced for each reading.

Models:
    RiskLevel: Classified risk (LOW, MEDIUM, HIGH)
    ReadingSource: Where a reading came from
    ClassificationSource: Which classifier produced a result
    SensorFeatures: The ten geological/weather feature values
    Reading: Immutable timestamped reading from one sensor
    Classification: Risk level, confidence and contributing factors
    StoredReading: A persisted reading paired with its classification
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


# Canonical factor name for each feature field, in request order
FEATURE_FACTOR_NAMES: Dict[str, str] = {
    "rainfall_mm": "Rainfall_mm",
    "slope_angle": "Slope_Angle",
    "soil_saturation": "Soil_Saturation",
    "vegetation_cover": "Vegetation_Cover",
    "earthquake_activity": "Earthquake_Activity",
    "proximity_to_water": "Proximity_to_Water",
    "landslide": "Landslide",
    "soil_type_gravel": "Soil_Type_Gravel",
    "soil_type_sand": "Soil_Type_Sand",
    "soil_type_silt": "Soil_Type_Silt",
}

FACTOR_FEATURE_NAMES: Dict[str, str] = {
    factor: field for field, factor in FEATURE_FACTOR_NAMES.items()
}


class RiskLevel(str, Enum):
    """
    Classified risk levels.

    Attributes:
        LOW: No immediate concern.
        MEDIUM: Elevated conditions, monitor closely.
        HIGH: Rockfall likely, raise an alert.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def is_high(self) -> bool:
        """Check if this level triggers alert creation."""
        return self == RiskLevel.HIGH


class ReadingSource(str, Enum):
    """Origin of a sensor reading."""

    SENSOR = "SENSOR"
    SIMULATION = "SIMULATION"
    MANUAL = "MANUAL"
    BACKEND_SIMULATION = "BACKEND_SIMULATION"


class ClassificationSource(str, Enum):
    """Classifier that produced a result."""

    REMOTE = "REMOTE"
    FALLBACK = "FALLBACK"


class SensorFeatures(BaseModel):
    """
    Geological and weather feature values for a single reading.

    Ranges are not enforced here so that out-of-range readings can be
    reported field by field during ingestion.

    Attributes:
        rainfall_mm: Rainfall in millimetres.
        slope_angle: Slope angle in degrees.
        soil_saturation: Soil saturation ratio.
        vegetation_cover: Vegetation cover ratio.
        earthquake_activity: Seismic activity magnitude.
        proximity_to_water: Distance to nearest water body in metres.
        landslide: Landslide probability.
        soil_type_gravel: Gravel soil present.
        soil_type_sand: Sand soil present.
        soil_type_silt: Silt soil present.

    Example:
        >>> features = SensorFeatures(
        ...     rainfall_mm=85.0,
        ...     slope_angle=72.0,
        ...     soil_saturation=0.85,
        ...     vegetation_cover=0.15,
        ...     earthquake_activity=3.2,
        ...     proximity_to_water=25.0,
        ...     landslide=0.75,
        ...     soil_type_silt=True,
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    rainfall_mm: float = Field(..., description="Rainfall in millimetres")
    slope_angle: float = Field(..., description="Slope angle in degrees")
    soil_saturation: float = Field(..., description="Soil saturation ratio")
    vegetation_cover: float = Field(..., description="Vegetation cover ratio")
    earthquake_activity: float = Field(..., description="Seismic activity magnitude")
    proximity_to_water: float = Field(
        ...,
        description="Distance to nearest water body in metres",
    )
    landslide: float = Field(..., description="Landslide probability")
    soil_type_gravel: bool = Field(default=False, description="Gravel soil present")
    soil_type_sand: bool = Field(default=False, description="Sand soil present")
    soil_type_silt: bool = Field(default=False, description="Silt soil present")

    def value_for_factor(self, factor: str) -> float:
        """
        Get the raw value for a canonical factor name.

        Booleans are reported as 1.0 / 0.0; unknown factors as 0.0.

        Args:
            factor: Canonical factor name (e.g., "Slope_Angle").

        Returns:
            float: The feature value.
        """
        field = FACTOR_FEATURE_NAMES.get(factor)
        if field is None:
            return 0.0
        return float(getattr(self, field))


class Reading(BaseModel):
    """
    Immutable timestamped reading from one sensor.

    Attributes:
        sensor_id: Sensor identifier, normalized to upper case.
        timestamp: When the reading was taken.
        features: Feature values.
        source: Where the reading came from.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    sensor_id: str = Field(
        ...,
        description="Sensor identifier",
        min_length=1,
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the reading was taken",
    )
    features: SensorFeatures = Field(
        ...,
        description="Feature values",
    )
    source: ReadingSource = Field(
        default=ReadingSource.SENSOR,
        description="Where the reading came from",
    )

    @field_validator("sensor_id", mode="before")
    @classmethod
    def normalize_sensor_id(cls, v: Any) -> Any:
        """Upper-case and trim sensor identifiers."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def is_backend_simulation(self) -> bool:
        """Check if the reading came from the server-side simulator."""
        return self.source == ReadingSource.BACKEND_SIMULATION


class Classification(BaseModel):
    """
    Risk classification produced for a reading.

    Attributes:
        level: Classified risk level.
        confidence: Confidence in [0, 1].
        factors: Contributing factor names, most significant first.
        model_version: Version tag of the producing model.
        source: Classifier that produced this result.
        processing_time_ms: Time taken to classify.

    Example:
        >>> classification = Classification(
        ...     level=RiskLevel.MEDIUM,
        ...     confidence=0.6,
        ...     factors=["Slope_Angle"],
        ...     model_version="fallback-2.0",
        ...     source=ClassificationSource.FALLBACK,
        ...     processing_time_ms=10,
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid", "protected_namespaces": ()}

    level: RiskLevel = Field(..., description="Classified risk level")
    confidence: float = Field(
        ...,
        description="Confidence in [0, 1]",
        ge=0.0,
        le=1.0,
    )
    factors: List[str] = Field(
        default_factory=list,
        description="Contributing factor names",
    )
    model_version: str = Field(..., description="Version tag of the producing model")
    source: ClassificationSource = Field(..., description="Producing classifier")
    processing_time_ms: float = Field(
        default=0.0,
        description="Time taken to classify (milliseconds)",
        ge=0.0,
    )

    @property
    def is_fallback(self) -> bool:
        """Check if this result came from the rule-based fallback."""
        return self.source == ClassificationSource.FALLBACK


class StoredReading(BaseModel):
    """
    A persisted reading paired with exactly one classification.

    Attributes:
        reading_id: Unique identifier assigned at persistence time.
        reading: The original reading.
        classification: The classification attached at ingestion.
        processed_at: When ingestion finished classifying the reading.
        fallback_reason: Why the fallback was used, if it was.
        remote_elapsed_ms: Time spent on the remote service before falling back.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    reading_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique reading identifier",
    )
    reading: Reading = Field(..., description="The original reading")
    classification: Classification = Field(..., description="Attached classification")
    processed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When ingestion classified the reading",
    )
    fallback_reason: Optional[str] = Field(
        default=None,
        description="Why the fallback classifier was used",
    )
    remote_elapsed_ms: Optional[float] = Field(
        default=None,
        description="Time spent on the remote service before falling back",
    )

    @property
    def sensor_id(self) -> str:
        """Sensor that produced the reading."""
        return self.reading.sensor_id
