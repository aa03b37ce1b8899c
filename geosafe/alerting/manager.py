"""
Alert manager for alert lifecycle management.

This module provides the AlertManager class which owns every change to an
alert after ingestion decides one is warranted: creation, acknowledgement,
resolution, escalation and the action log.

Key Features:
    - Creates alerts from HIGH classifications with trigger-factor context
    - Serializes all transitions of one alert through a per-alert lock
    - Re-reads the alert inside the lock and writes with a version check,
      retrying on a concurrent write from another process
    - Publishes lifecycle events on a best-effort basis
    - Groups and summarizes active alerts for operator views

Example:
    >>> manager = AlertManager(repository, broadcaster, config.alerts)
    >>> alert = await manager.create_alert(stored_reading, sensor)
    >>> alert = await manager.acknowledge(alert.alert_id, actor="operator-7")
    >>> alert = await manager.resolve(alert.alert_id, actor="operator-7")
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import structlog

from geosafe.config.models import AlertsConfig
from geosafe.exceptions import InvalidTransitionError, NotFoundError, StaleAlertError
from geosafe.interfaces.broadcaster import Broadcaster, BroadcastTopic
from geosafe.interfaces.repository import Repository
from geosafe.models.alerts import (
    AffectedArea,
    Alert,
    AlertMetadata,
    AlertPriority,
    AlertStatus,
    EscalationClock,
    TriggerFactor,
    build_alert_id,
)
from geosafe.models.readings import StoredReading
from geosafe.models.sensors import Sensor

logger = structlog.get_logger(__name__)


# Attempts to apply a transition when another writer bumps the version first
MAX_WRITE_ATTEMPTS = 3

# Alerts raised for one sensor within the same millisecond
MAX_ID_COLLISIONS = 100


class _NoLongerDue(Exception):
    """The alert re-read under its lock no longer meets the escalation condition."""


class AlertManager:
    """
    Orchestrates the alert lifecycle.

    Responsibilities:
    - Build alerts from HIGH-risk stored readings
    - Apply acknowledge, resolve, escalate and record-action transitions
    - Keep concurrent transitions of the same alert from losing updates
    - Publish lifecycle events

    Attributes:
        repository: Persistence collaborator.
        broadcaster: Publish handle, or None to disable broadcasting.
        config: Alert creation and escalation settings.
        _locks: Per-alert locks serializing in-process transitions. An
            entry lives only while some caller holds or waits on it.

    Example:
        >>> manager = AlertManager(
        ...     repository=repository,
        ...     broadcaster=broadcaster,
        ...     config=AlertsConfig(),
        ... )
        >>> escalated = await manager.escalate("ALERT_1700000000000_S1", "shift-lead")
    """

    def __init__(
        self,
        repository: Repository,
        broadcaster: Optional[Broadcaster] = None,
        config: Optional[AlertsConfig] = None,
    ) -> None:
        """
        Initialize the AlertManager.

        Args:
            repository: Persistence collaborator.
            broadcaster: Publish handle for lifecycle events.
            config: Alert settings; defaults to AlertsConfig().
        """
        self.repository = repository
        self.broadcaster = broadcaster
        self.config = config or AlertsConfig()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

        logger.info(
            "alert_manager_initialized",
            default_priority=self.config.creation.default_priority.value,
            broadcasting=broadcaster is not None,
        )

    # =========================================================================
    # CREATION
    # =========================================================================

    def should_create_alert(self, stored: StoredReading) -> bool:
        """
        Decide whether a stored reading warrants an alert.

        Only HIGH classifications raise alerts. Backend simulation readings
        additionally need confidence above simulation_min_confidence.

        Args:
            stored: The persisted reading and classification.

        Returns:
            bool: True if an alert should be created.
        """
        classification = stored.classification
        if not classification.level.is_high:
            return False
        if stored.reading.is_backend_simulation:
            return classification.confidence > self.config.creation.simulation_min_confidence
        return True

    def build_alert(
        self,
        stored: StoredReading,
        sensor: Sensor,
        timestamp: Optional[datetime] = None,
    ) -> Alert:
        """
        Build a new ACTIVE alert for a HIGH-risk stored reading.

        Trigger factors join the classification's factors against the
        sensor's configured thresholds and the reading's raw values.

        Args:
            stored: The persisted reading and classification.
            sensor: The sensor that produced the reading.
            timestamp: Trigger time, defaults to now.

        Returns:
            Alert: Unsaved alert at escalation level 0.
        """
        triggered_at = timestamp or datetime.now(timezone.utc)
        classification = stored.classification
        creation = self.config.creation
        simulated = stored.reading.is_backend_simulation

        trigger_factors = [
            TriggerFactor(
                factor=factor,
                value=stored.reading.features.value_for_factor(factor),
                threshold=sensor.threshold_for(factor),
                severity=classification.level,
            )
            for factor in classification.factors
        ]

        return Alert(
            alert_id=build_alert_id(stored.sensor_id, triggered_at),
            sensor_id=stored.sensor_id,
            reading_id=stored.reading_id,
            risk_level=classification.level,
            confidence=classification.confidence,
            priority=creation.simulation_priority if simulated else creation.default_priority,
            status=AlertStatus.ACTIVE,
            location=sensor.location,
            zone=sensor.zone,
            affected_area=AffectedArea(
                radius_m=creation.simulation_radius_m if simulated else creation.default_radius_m,
                risk_zone=creation.risk_zone,
            ),
            trigger_factors=trigger_factors,
            triggered_at=triggered_at,
            metadata=AlertMetadata(
                model_version=classification.model_version,
                processing_time_ms=classification.processing_time_ms,
            ),
        )

    async def create_alert(
        self,
        stored: StoredReading,
        sensor: Sensor,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Alert]:
        """
        Create, persist and publish an alert if the reading warrants one.

        Args:
            stored: The persisted reading and classification.
            sensor: The sensor that produced the reading.
            timestamp: Trigger time, defaults to now.

        Returns:
            Optional[Alert]: The new alert, or None if none was warranted.
        """
        if not self.should_create_alert(stored):
            if stored.classification.level.is_high:
                logger.info(
                    "alert_suppressed_low_confidence",
                    sensor_id=stored.sensor_id,
                    confidence=stored.classification.confidence,
                )
            return None

        triggered_at = timestamp or datetime.now(timezone.utc)
        for attempt in range(1, MAX_ID_COLLISIONS + 1):
            alert = self.build_alert(stored, sensor, triggered_at)
            try:
                await self.repository.save_alert(alert)
                break
            except StaleAlertError:
                # Same sensor, same millisecond: move to the next free id
                if attempt == MAX_ID_COLLISIONS:
                    raise
                logger.warning("alert_id_collision", alert_id=alert.alert_id)
                triggered_at = triggered_at + timedelta(milliseconds=1)

        logger.info(
            "alert_created",
            alert_id=alert.alert_id,
            sensor_id=alert.sensor_id,
            priority=alert.priority.value,
            confidence=alert.confidence,
            factors=[f.factor for f in alert.trigger_factors],
            model_version=alert.metadata.model_version,
        )

        await self._publish(BroadcastTopic.ALERT_CREATED, alert)
        return alert

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    @asynccontextmanager
    async def _alert_lock(self, alert_id: str) -> AsyncIterator[None]:
        """
        Hold the lock serializing transitions of one alert.

        The lock is reference-counted and removed when its last holder or
        waiter leaves, whatever the outcome of the transition.
        """
        lock = self._locks.get(alert_id)
        if lock is None:
            lock = self._locks[alert_id] = asyncio.Lock()
        self._lock_users[alert_id] = self._lock_users.get(alert_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[alert_id] - 1
            if remaining:
                self._lock_users[alert_id] = remaining
            else:
                del self._lock_users[alert_id]
                del self._locks[alert_id]

    async def _transition(
        self,
        alert_id: str,
        operation: str,
        apply: Callable[[Alert], Alert],
    ) -> Alert:
        """
        Apply a transition under the alert's lock with a versioned write.

        Args:
            alert_id: Alert to change.
            operation: Name of the operation for logging.
            apply: Pure transition returning the updated alert. It sees the
                alert as freshly read inside the lock.

        Returns:
            Alert: The saved alert.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidTransitionError: If the transition is illegal.
            StaleAlertError: If every write attempt lost a race.
        """
        async with self._alert_lock(alert_id):
            for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
                current = await self.repository.get_alert(alert_id)
                if current is None:
                    raise NotFoundError("Alert", alert_id)

                try:
                    updated = apply(current)
                except InvalidTransitionError as e:
                    logger.warning(
                        "alert_transition_rejected",
                        alert_id=alert_id,
                        operation=operation,
                        status=e.status,
                        reason=e.reason,
                    )
                    raise

                updated = updated.model_copy(update={"version": current.version + 1})

                try:
                    await self.repository.save_alert(updated)
                except StaleAlertError:
                    if attempt == MAX_WRITE_ATTEMPTS:
                        raise
                    logger.warning(
                        "alert_write_conflict",
                        alert_id=alert_id,
                        operation=operation,
                        attempt=attempt,
                    )
                    continue

                return updated

        raise StaleAlertError(alert_id, expected_version=-1)

    async def acknowledge(
        self,
        alert_id: str,
        actor: str,
        timestamp: Optional[datetime] = None,
    ) -> Alert:
        """
        Acknowledge an ACTIVE alert.

        Args:
            alert_id: Alert to acknowledge.
            actor: Operator taking ownership.
            timestamp: Acknowledgement time, defaults to now.

        Returns:
            Alert: The acknowledged alert.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidTransitionError: If the alert is not ACTIVE.
        """
        alert = await self._transition(
            alert_id,
            "acknowledge",
            lambda a: a.acknowledge(actor, timestamp),
        )
        logger.info("alert_acknowledged", alert_id=alert_id, actor=actor)
        await self._publish(BroadcastTopic.ALERT_ACKNOWLEDGED, alert)
        return alert

    async def resolve(
        self,
        alert_id: str,
        actor: str,
        resolution: AlertStatus = AlertStatus.RESOLVED,
        timestamp: Optional[datetime] = None,
    ) -> Alert:
        """
        Close an alert as RESOLVED or FALSE_POSITIVE.

        Args:
            alert_id: Alert to close.
            actor: Operator closing the alert.
            resolution: RESOLVED or FALSE_POSITIVE.
            timestamp: Resolution time, defaults to now.

        Returns:
            Alert: The closed alert.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidTransitionError: If the alert is already closed.
            ValueError: If resolution is not a terminal status.
        """
        alert = await self._transition(
            alert_id,
            "resolve",
            lambda a: a.resolve(actor, resolution, timestamp),
        )
        logger.info(
            "alert_resolved",
            alert_id=alert_id,
            actor=actor,
            resolution=resolution.value,
            duration_seconds=(
                (alert.resolved_at - alert.triggered_at).total_seconds()
                if alert.resolved_at
                else None
            ),
        )
        await self._publish(BroadcastTopic.ALERT_RESOLVED, alert)
        return alert

    async def escalate(
        self,
        alert_id: str,
        escalated_to: str,
        timestamp: Optional[datetime] = None,
    ) -> Alert:
        """
        Manually escalate an ACTIVE alert one level.

        Args:
            alert_id: Alert to escalate.
            escalated_to: Escalation target.
            timestamp: Escalation time, defaults to now.

        Returns:
            Alert: The escalated alert.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidTransitionError: If the alert is not ACTIVE or already at
                the maximum level.
        """
        alert = await self._transition(
            alert_id,
            "escalate",
            lambda a: a.escalate(escalated_to, timestamp),
        )
        self._log_escalation(alert, escalated_to)
        await self._publish(BroadcastTopic.ALERT_ESCALATED, alert)
        return alert

    async def escalate_if_due(
        self,
        alert_id: str,
        escalated_to: str,
        now: datetime,
        thresholds_minutes: Dict[AlertPriority, float],
        clock: EscalationClock = EscalationClock.TRIGGERED_AT,
    ) -> Optional[Alert]:
        """
        Escalate an alert only if it is still overdue when re-read under lock.

        Used by the auto-escalation sweep so that an alert acknowledged or
        escalated after the sweep's query is left alone.

        Args:
            alert_id: Alert to escalate.
            escalated_to: Escalation target.
            now: Sweep time, also recorded as the escalation time.
            thresholds_minutes: Escalation threshold per priority.
            clock: Reference point used to age alerts.

        Returns:
            Optional[Alert]: The escalated alert, or None if no longer due.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        def escalate_overdue(current: Alert) -> Alert:
            if not current.needs_escalation(now, thresholds_minutes, clock):
                raise _NoLongerDue(alert_id)
            return current.escalate(escalated_to, now)

        try:
            alert = await self._transition(alert_id, "auto_escalate", escalate_overdue)
        except _NoLongerDue:
            return None

        self._log_escalation(alert, escalated_to)
        await self._publish(BroadcastTopic.ALERT_ESCALATED, alert)
        return alert

    def _log_escalation(self, alert: Alert, escalated_to: str) -> None:
        logger.info(
            "alert_escalated",
            alert_id=alert.alert_id,
            level=alert.escalation.level,
            priority=alert.priority.value,
            escalated_to=escalated_to,
            age_seconds=(
                (alert.escalation.escalated_at - alert.triggered_at).total_seconds()
                if alert.escalation.escalated_at
                else None
            ),
        )

    async def record_action(
        self,
        alert_id: str,
        action: str,
        actor: str,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Alert:
        """
        Append an entry to an alert's action log. Legal in every state.

        Args:
            alert_id: Alert to annotate.
            action: What was done.
            actor: Who did it.
            notes: Free-form notes.
            timestamp: When it was done, defaults to now.

        Returns:
            Alert: The updated alert.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        alert = await self._transition(
            alert_id,
            "record_action",
            lambda a: a.record_action(action, actor, notes, timestamp),
        )
        logger.info("alert_action_recorded", alert_id=alert_id, action=action, actor=actor)
        await self._publish(BroadcastTopic.ALERT_ACTION_RECORDED, alert)
        return alert

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_alert(self, alert_id: str) -> Alert:
        """
        Get an alert by ID.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        alert = await self.repository.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id)
        return alert

    async def get_active_alerts_grouped(self) -> Dict[AlertPriority, List[Alert]]:
        """
        Get open alerts grouped by priority, most urgent first.

        Returns:
            Dict[AlertPriority, List[Alert]]: Keys CRITICAL, HIGH, MEDIUM, LOW
                (always present), each list newest first.
        """
        groups: Dict[AlertPriority, List[Alert]] = {
            priority: [] for priority in sorted(AlertPriority, key=lambda p: -p.rank)
        }
        for alert in await self.repository.get_active_alerts():
            groups[alert.priority].append(alert)
        for alerts in groups.values():
            alerts.sort(key=lambda a: a.triggered_at, reverse=True)
        return groups

    async def get_alert_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Summarize open alerts for operator dashboards.

        Args:
            now: Current time, defaults to now.

        Returns:
            Dict[str, Any]: Counts of open, escalated and overdue alerts, and
                open alerts per priority.
        """
        now = now or datetime.now(timezone.utc)
        escalation = self.config.escalation
        active = await self.repository.get_active_alerts()

        by_priority = {priority.value: 0 for priority in AlertPriority}
        for alert in active:
            by_priority[alert.priority.value] += 1

        return {
            "open_alerts": len(active),
            "active_alerts": sum(1 for a in active if a.is_active),
            "escalated_alerts": sum(1 for a in active if a.escalation.level > 0),
            "alerts_needing_escalation": sum(
                1
                for a in active
                if a.needs_escalation(now, escalation.thresholds_minutes, escalation.measure_from)
            ),
            "priority_distribution": by_priority,
        }

    # =========================================================================
    # BROADCAST
    # =========================================================================

    async def _publish(self, topic: BroadcastTopic, alert: Alert) -> None:
        """Publish an alert event; failures are logged and swallowed."""
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.publish(topic, alert.model_dump(mode="json"))
        except Exception as e:
            logger.error(
                "alert_broadcast_failed",
                topic=topic.value,
                alert_id=alert.alert_id,
                error=str(e),
            )


async def create_alert_manager(
    repository: Repository,
    broadcaster: Optional[Broadcaster] = None,
    config: Optional[AlertsConfig] = None,
) -> AlertManager:
    """
    Factory function to create an AlertManager.

    Args:
        repository: Persistence collaborator.
        broadcaster: Publish handle for lifecycle events.
        config: Alert settings.

    Returns:
        AlertManager: A new manager instance.
    """
    return AlertManager(repository=repository, broadcaster=broadcaster, config=config)
