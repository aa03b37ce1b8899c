"""
Alert data models and lifecycle transitions.

This module defines the alert entity and the transitions that move it
through its lifecycle. Transitions never mutate in place: each returns an
updated copy, and an illegal transition raises InvalidTransitionError while
leaving the original untouched.

State machine:
    ACTIVE ──acknowledge──> ACKNOWLEDGED
    ACTIVE ──resolve──────> RESOLVED | FALSE_POSITIVE
    ACKNOWLEDGED ─resolve─> RESOLVED | FALSE_POSITIVE
    ACTIVE ──escalate─────> ACTIVE (level + 1, max 3)

Models:
    AlertStatus: Lifecycle states
    AlertPriority: Urgency tiers (LOW, MEDIUM, HIGH, CRITICAL)
    AlertType: Kind of alert
    RiskZone: Extent of the affected area
    EscalationClock: Reference point for escalation age
    AffectedArea: Radius and zone around the sensor
    TriggerFactor: One factor that contributed to the alert
    AlertAction: One entry in the action log
    Escalation: Escalation level and last target
    AlertMetadata: Model provenance
    Alert: The alert entity
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from geosafe.exceptions import InvalidTransitionError
from geosafe.models.readings import RiskLevel
from geosafe.models.sensors import GeoPoint


MAX_ESCALATION_LEVEL = 3


class AlertStatus(str, Enum):
    """
    Alert lifecycle states.

    Attributes:
        ACTIVE: Raised and awaiting an operator.
        ACKNOWLEDGED: An operator has taken ownership.
        RESOLVED: Closed after handling (terminal).
        FALSE_POSITIVE: Closed as not a real hazard (terminal).
    """

    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    FALSE_POSITIVE = "FALSE_POSITIVE"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return self in (AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE)


class AlertPriority(str, Enum):
    """Alert urgency tiers, lowest first."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        """Position in the LOW..CRITICAL ordering."""
        return _PRIORITY_ORDER.index(self)

    @property
    def is_critical(self) -> bool:
        """Check if this is the highest priority."""
        return self == AlertPriority.CRITICAL

    def raised(self) -> "AlertPriority":
        """Return the next priority up, capped at CRITICAL."""
        return _PRIORITY_ORDER[min(self.rank + 1, len(_PRIORITY_ORDER) - 1)]


_PRIORITY_ORDER: List[AlertPriority] = [
    AlertPriority.LOW,
    AlertPriority.MEDIUM,
    AlertPriority.HIGH,
    AlertPriority.CRITICAL,
]


class AlertType(str, Enum):
    """Kind of alert."""

    ROCKFALL_RISK = "ROCKFALL_RISK"
    EQUIPMENT_FAILURE = "EQUIPMENT_FAILURE"
    WEATHER_WARNING = "WEATHER_WARNING"
    SEISMIC_EVENT = "SEISMIC_EVENT"


class RiskZone(str, Enum):
    """Extent of the area affected by an alert."""

    IMMEDIATE = "IMMEDIATE"
    NEARBY = "NEARBY"
    EXTENDED = "EXTENDED"


class EscalationClock(str, Enum):
    """
    Reference point used to age alerts for auto-escalation.

    Attributes:
        TRIGGERED_AT: Age is measured from when the alert was raised.
        LAST_ESCALATION: Age is measured from the most recent escalation,
            falling back to the trigger time before the first one.
    """

    TRIGGERED_AT = "triggered_at"
    LAST_ESCALATION = "last_escalation"


class AffectedArea(BaseModel):
    """Area around the sensor considered at risk."""

    model_config = {"frozen": True, "extra": "forbid"}

    radius_m: float = Field(default=100.0, description="Radius in metres", gt=0)
    risk_zone: RiskZone = Field(default=RiskZone.IMMEDIATE)


class TriggerFactor(BaseModel):
    """
    One factor that contributed to an alert.

    Attributes:
        factor: Canonical factor name.
        value: Observed value in the originating reading.
        threshold: Threshold configured on the sensor (0 when unset).
        severity: Risk level of the originating classification.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    factor: str
    value: float
    threshold: float
    severity: RiskLevel


class AlertAction(BaseModel):
    """One entry in the alert action log."""

    model_config = {"frozen": True, "extra": "forbid"}

    action: str = Field(..., min_length=1)
    taken_by: str = Field(..., min_length=1)
    taken_at: datetime
    notes: Optional[str] = None


class Escalation(BaseModel):
    """Escalation state of an alert."""

    model_config = {"frozen": True, "extra": "forbid"}

    level: int = Field(default=0, ge=0, le=MAX_ESCALATION_LEVEL)
    escalated_at: Optional[datetime] = None
    escalated_to: Optional[str] = None


class AlertMetadata(BaseModel):
    """Provenance of the classification behind an alert."""

    model_config = {"frozen": True, "extra": "forbid", "protected_namespaces": ()}

    model_version: str
    processing_time_ms: float = 0.0


def build_alert_id(sensor_id: str, triggered_at: datetime) -> str:
    """
    Build an alert identifier from trigger time and sensor.

    Args:
        sensor_id: Sensor that produced the triggering reading.
        triggered_at: When the alert was raised.

    Returns:
        str: Identifier in format `ALERT_{epoch_ms}_{sensor_id}`.
    """
    epoch_ms = int(triggered_at.timestamp() * 1000)
    return f"ALERT_{epoch_ms}_{sensor_id}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Alert(BaseModel):
    """
    Alert raised from a HIGH-risk classification.

    Attributes:
        alert_id: Unique identifier derived from trigger time and sensor.
        sensor_id: Sensor that produced the triggering reading.
        reading_id: The originating stored reading.
        alert_type: Kind of alert.
        risk_level: Risk level of the originating classification.
        confidence: Confidence of the originating classification.
        priority: Current urgency tier (raised by escalation).
        status: Lifecycle state.
        location: Sensor position at trigger time.
        zone: Mine grid zone of the sensor.
        affected_area: Radius and zone considered at risk.
        trigger_factors: Factors that contributed, with values and thresholds.
        actions: Ordered action log.
        escalation: Escalation level and last target.
        triggered_at: When the alert was raised.
        acknowledged_at: When an operator acknowledged it.
        acknowledged_by: Who acknowledged it.
        resolved_at: When it was closed.
        resolved_by: Who closed it.
        metadata: Classification provenance.
        version: Write counter for optimistic concurrency.

    Example:
        >>> alert = Alert(
        ...     alert_id="ALERT_1700000000000_SENSOR_001",
        ...     sensor_id="SENSOR_001",
        ...     reading_id="4b1f...",
        ...     risk_level=RiskLevel.HIGH,
        ...     confidence=0.7,
        ...     priority=AlertPriority.HIGH,
        ...     triggered_at=datetime.now(timezone.utc),
        ...     metadata=AlertMetadata(model_version="fallback-2.0"),
        ... )
        >>> acknowledged = alert.acknowledge("operator-7")
    """

    model_config = {"extra": "forbid"}

    # Identification
    alert_id: str = Field(..., description="Unique alert identifier")
    sensor_id: str = Field(..., description="Originating sensor")
    reading_id: str = Field(..., description="Originating stored reading")
    alert_type: AlertType = Field(default=AlertType.ROCKFALL_RISK)

    # Classification
    risk_level: RiskLevel = Field(..., description="Originating risk level")
    confidence: float = Field(..., ge=0.0, le=1.0)
    priority: AlertPriority = Field(..., description="Current urgency tier")
    status: AlertStatus = Field(default=AlertStatus.ACTIVE)

    # Location
    location: Optional[GeoPoint] = Field(default=None)
    zone: Optional[str] = Field(default=None)
    affected_area: AffectedArea = Field(default_factory=AffectedArea)

    # Context
    trigger_factors: List[TriggerFactor] = Field(default_factory=list)
    actions: List[AlertAction] = Field(default_factory=list)
    escalation: Escalation = Field(default_factory=Escalation)

    # Lifecycle timestamps
    triggered_at: datetime = Field(..., description="When the alert was raised")
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    metadata: AlertMetadata
    version: int = Field(default=0, ge=0)

    @property
    def is_active(self) -> bool:
        """Check if the alert is awaiting an operator."""
        return self.status == AlertStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        """Check if the alert has been closed."""
        return self.status.is_terminal

    @property
    def can_escalate(self) -> bool:
        """Check if escalate() would succeed."""
        return self.is_active and self.escalation.level < MAX_ESCALATION_LEVEL

    def _refuse(self, operation: str, reason: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            alert_id=self.alert_id,
            operation=operation,
            status=self.status.value,
            reason=reason,
        )

    def acknowledge(self, actor: str, timestamp: Optional[datetime] = None) -> "Alert":
        """
        Mark the alert as acknowledged by an operator.

        Args:
            actor: Who acknowledged the alert.
            timestamp: Acknowledgement time, defaults to now.

        Returns:
            Alert: Updated alert in ACKNOWLEDGED state.

        Raises:
            InvalidTransitionError: If the alert is not ACTIVE.
        """
        if not self.is_active:
            raise self._refuse("acknowledge", "only ACTIVE alerts can be acknowledged")

        return self.model_copy(
            update={
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged_at": timestamp or _now(),
                "acknowledged_by": actor,
            }
        )

    def resolve(
        self,
        actor: str,
        resolution: AlertStatus = AlertStatus.RESOLVED,
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Close the alert.

        Args:
            actor: Who resolved the alert.
            resolution: RESOLVED or FALSE_POSITIVE.
            timestamp: Resolution time, defaults to now.

        Returns:
            Alert: Updated alert in the given terminal state.

        Raises:
            InvalidTransitionError: If the alert is already closed.
            ValueError: If resolution is not a terminal status.
        """
        if not resolution.is_terminal:
            raise ValueError(
                f"Resolution must be RESOLVED or FALSE_POSITIVE, got {resolution.value}"
            )
        if self.is_terminal:
            raise self._refuse("resolve", "alert is already closed")

        return self.model_copy(
            update={
                "status": resolution,
                "resolved_at": timestamp or _now(),
                "resolved_by": actor,
            }
        )

    def escalate(self, escalated_to: str, timestamp: Optional[datetime] = None) -> "Alert":
        """
        Escalate the alert one level.

        Each escalation raises priority one step. Reaching the maximum level
        always leaves the alert at CRITICAL.

        Args:
            escalated_to: Escalation target (person, team or system marker).
            timestamp: Escalation time, defaults to now.

        Returns:
            Alert: Updated alert with incremented escalation level.

        Raises:
            InvalidTransitionError: If the alert is not ACTIVE or already
                at the maximum level.
        """
        if not self.is_active:
            raise self._refuse("escalate", "only ACTIVE alerts can be escalated")
        if self.escalation.level >= MAX_ESCALATION_LEVEL:
            raise self._refuse("escalate", "alert is already at maximum escalation level")

        level = self.escalation.level + 1
        priority = self.priority.raised()
        if level >= MAX_ESCALATION_LEVEL:
            priority = AlertPriority.CRITICAL

        return self.model_copy(
            update={
                "priority": priority,
                "escalation": Escalation(
                    level=level,
                    escalated_at=timestamp or _now(),
                    escalated_to=escalated_to,
                ),
            }
        )

    def record_action(
        self,
        action: str,
        actor: str,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Append an entry to the action log. Legal in every state.

        Args:
            action: What was done.
            actor: Who did it.
            notes: Free-form notes.
            timestamp: When it was done, defaults to now.

        Returns:
            Alert: Updated alert with the action appended.
        """
        entry = AlertAction(
            action=action,
            taken_by=actor,
            taken_at=timestamp or _now(),
            notes=notes,
        )
        return self.model_copy(update={"actions": [*self.actions, entry]})

    def age_minutes(
        self,
        now: datetime,
        clock: EscalationClock = EscalationClock.TRIGGERED_AT,
    ) -> float:
        """
        Minutes elapsed since the escalation reference point.

        Args:
            now: Current time.
            clock: Which reference point to measure from.

        Returns:
            float: Age in minutes.
        """
        reference = self.triggered_at
        if clock == EscalationClock.LAST_ESCALATION and self.escalation.escalated_at:
            reference = self.escalation.escalated_at
        return (now - reference).total_seconds() / 60.0

    def needs_escalation(
        self,
        now: datetime,
        thresholds_minutes: Dict[AlertPriority, float],
        clock: EscalationClock = EscalationClock.TRIGGERED_AT,
    ) -> bool:
        """
        Check if the alert has aged past its priority's threshold.

        Args:
            now: Current time.
            thresholds_minutes: Escalation threshold per priority.
            clock: Which reference point to measure from.

        Returns:
            bool: True if the alert is escalatable and overdue.
        """
        if not self.can_escalate:
            return False
        threshold = thresholds_minutes.get(self.priority)
        if threshold is None:
            return False
        return self.age_minutes(now, clock) > threshold
