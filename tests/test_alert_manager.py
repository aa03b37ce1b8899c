"""
Alert manager tests.

Runs against the in-memory repository, which enforces the same version
contract as the PostgreSQL-backed one.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from geosafe.alerting import AlertManager
from geosafe.exceptions import InvalidTransitionError, NotFoundError, StaleAlertError
from geosafe.interfaces.broadcaster import BroadcastTopic
from geosafe.models.alerts import AlertPriority, AlertStatus
from geosafe.models.readings import ReadingSource, RiskLevel
from tests.conftest import (
    HIGH_RISK_FEATURES,
    NOW,
    RecordingBroadcaster,
    make_alert,
    make_reading,
    make_stored,
)


@pytest.fixture
def manager(repository, broadcaster, alerts_config):
    return AlertManager(repository, broadcaster, alerts_config)


@pytest.fixture
def stored_high(high_risk_reading):
    return make_stored(high_risk_reading, RiskLevel.HIGH, 0.9)


class TestCreateAlert:
    """Alert creation from stored readings"""

    @pytest.mark.asyncio
    async def test_creates_high_priority_alert(self, manager, repository, broadcaster, sensor, stored_high):
        alert = await manager.create_alert(stored_high, sensor, timestamp=NOW)

        assert alert is not None
        assert alert.alert_id == "ALERT_1714557600000_SENSOR_001"
        assert alert.priority == AlertPriority.HIGH
        assert alert.status == AlertStatus.ACTIVE
        assert alert.reading_id == stored_high.reading_id
        assert alert.zone == "ZONE_A"
        assert alert.affected_area.radius_m == 100.0
        assert alert.escalation.level == 0
        assert alert.version == 0

        assert alert.alert_id in repository.alerts
        assert broadcaster.topics() == [BroadcastTopic.ALERT_CREATED]

    @pytest.mark.asyncio
    async def test_trigger_factors_join_values_and_thresholds(self, manager, sensor, stored_high):
        alert = await manager.create_alert(stored_high, sensor, timestamp=NOW)

        by_name = {f.factor: f for f in alert.trigger_factors}
        assert list(by_name) == ["Slope_Angle", "Rainfall_mm", "Soil_Type_Silt"]
        assert by_name["Slope_Angle"].value == 72.0
        assert by_name["Slope_Angle"].threshold == 60.0
        assert by_name["Rainfall_mm"].threshold == 50.0
        assert by_name["Soil_Type_Silt"].value == 1.0
        assert by_name["Soil_Type_Silt"].threshold == 0.0
        assert all(f.severity == RiskLevel.HIGH for f in alert.trigger_factors)

    @pytest.mark.asyncio
    async def test_non_high_raises_nothing(self, manager, repository, sensor, low_risk_reading):
        stored = make_stored(low_risk_reading, RiskLevel.MEDIUM, 0.6)
        assert await manager.create_alert(stored, sensor) is None
        assert repository.alerts == {}

    @pytest.mark.asyncio
    async def test_simulation_is_critical_with_wider_radius(self, manager, sensor):
        reading = make_reading(HIGH_RISK_FEATURES, source=ReadingSource.BACKEND_SIMULATION)
        alert = await manager.create_alert(make_stored(reading, RiskLevel.HIGH, 0.7), sensor)

        assert alert.priority == AlertPriority.CRITICAL
        assert alert.affected_area.radius_m == 200.0

    @pytest.mark.asyncio
    async def test_low_confidence_simulation_suppressed(self, manager, repository, sensor):
        """Simulation needs confidence strictly above 0.5"""
        reading = make_reading(HIGH_RISK_FEATURES, source=ReadingSource.BACKEND_SIMULATION)
        assert await manager.create_alert(make_stored(reading, RiskLevel.HIGH, 0.5), sensor) is None
        assert repository.alerts == {}

    @pytest.mark.asyncio
    async def test_same_millisecond_gets_next_id(self, manager, sensor, high_risk_reading):
        first = await manager.create_alert(make_stored(high_risk_reading), sensor, timestamp=NOW)
        second = await manager.create_alert(make_stored(high_risk_reading), sensor, timestamp=NOW)

        assert first.alert_id == "ALERT_1714557600000_SENSOR_001"
        assert second.alert_id == "ALERT_1714557600001_SENSOR_001"
        assert second.triggered_at == NOW + timedelta(milliseconds=1)

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_fail_creation(self, repository, sensor, stored_high):
        manager = AlertManager(repository, RecordingBroadcaster(fail=True))
        alert = await manager.create_alert(stored_high, sensor)
        assert alert is not None
        assert alert.alert_id in repository.alerts


class TestTransitions:
    """Acknowledge, resolve, escalate, record action"""

    @pytest_asyncio.fixture
    async def alert_id(self, repository):
        alert = make_alert()
        await repository.save_alert(alert)
        return alert.alert_id

    @pytest.mark.asyncio
    async def test_acknowledge_bumps_version(self, manager, repository, broadcaster, alert_id):
        alert = await manager.acknowledge(alert_id, "operator-7", timestamp=NOW)

        assert alert.status == AlertStatus.ACKNOWLEDGED
        assert alert.version == 1
        assert repository.alerts[alert_id].version == 1
        assert broadcaster.topics() == [BroadcastTopic.ALERT_ACKNOWLEDGED]

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, manager, repository, alert_id):
        await manager.escalate(alert_id, "shift-lead")
        await manager.acknowledge(alert_id, "operator-7")
        await manager.record_action(alert_id, "barricade_placed", "operator-7", notes="bench 4")
        resolved = await manager.resolve(alert_id, "operator-7")

        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.escalation.level == 1
        assert resolved.priority == AlertPriority.CRITICAL
        assert resolved.actions[0].notes == "bench 4"
        assert resolved.version == 4

    @pytest.mark.asyncio
    async def test_concurrent_acknowledge_has_one_winner(self, manager, repository, alert_id):
        results = await asyncio.gather(
            manager.acknowledge(alert_id, "operator-7"),
            manager.acknowledge(alert_id, "operator-8"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert repository.alerts[alert_id].acknowledged_by == winners[0].acknowledged_by
        assert repository.alerts[alert_id].version == 1

    @pytest.mark.asyncio
    async def test_stale_write_is_retried(self, manager, repository, alert_id):
        """A write lost to another process is re-read and reapplied"""
        original_save = repository.save_alert
        attempts = []

        async def _save(alert):
            attempts.append(alert.version)
            if len(attempts) == 1:
                raise StaleAlertError(alert_id, expected_version=0)
            await original_save(alert)

        with patch.object(repository, "save_alert", new=_save):
            alert = await manager.acknowledge(alert_id, "operator-7")

        assert alert.status == AlertStatus.ACKNOWLEDGED
        assert repository.alerts[alert_id].version == 1
        assert attempts == [1, 1]

    @pytest.mark.asyncio
    async def test_persistent_conflict_raises_stale(self, manager, repository, alert_id):
        failing = AsyncMock(side_effect=StaleAlertError(alert_id, 0))
        with patch.object(repository, "save_alert", new=failing):
            with pytest.raises(StaleAlertError):
                await manager.acknowledge(alert_id, "operator-7")

        assert failing.await_count == 3
        assert repository.alerts[alert_id].status == AlertStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_alert(self, manager):
        with pytest.raises(NotFoundError):
            await manager.acknowledge("ALERT_0_NOPE", "operator-7")
        with pytest.raises(NotFoundError):
            await manager.get_alert("ALERT_0_NOPE")

    @pytest.mark.asyncio
    async def test_rejected_transition_writes_nothing(self, manager, repository, alert_id):
        await manager.resolve(alert_id, "operator-7")
        writes = repository.alert_writes

        with pytest.raises(InvalidTransitionError):
            await manager.escalate(alert_id, "supervisor")
        assert repository.alert_writes == writes

    @pytest.mark.asyncio
    async def test_action_on_closed_alert(self, manager, alert_id):
        await manager.resolve(alert_id, "operator-7", resolution=AlertStatus.FALSE_POSITIVE)
        alert = await manager.record_action(alert_id, "post_incident_review", "geologist")
        assert alert.status == AlertStatus.FALSE_POSITIVE
        assert len(alert.actions) == 1


class TestAlertLocks:
    """Per-alert lock bookkeeping"""

    @pytest.mark.asyncio
    async def test_unknown_ids_leave_no_locks(self, manager):
        for i in range(50):
            with pytest.raises(NotFoundError):
                await manager.acknowledge(f"ALERT_0_MISSING_{i}", "operator-7")

        assert manager._locks == {}
        assert manager._lock_users == {}

    @pytest.mark.asyncio
    async def test_open_alert_lock_released_after_transition(self, manager, repository):
        alert = make_alert()
        await repository.save_alert(alert)

        await manager.acknowledge(alert.alert_id, "operator-7")

        assert repository.alerts[alert.alert_id].status == AlertStatus.ACKNOWLEDGED
        assert manager._locks == {}

    @pytest.mark.asyncio
    async def test_lock_kept_while_callers_wait(self, manager, repository):
        """Later callers queue on the same lock, and the entry goes once all finish"""
        alert = make_alert()
        await repository.save_alert(alert)
        original_get = repository.get_alert
        seen = []

        async def _get(alert_id):
            seen.append(len(manager._locks))
            await asyncio.sleep(0)
            return await original_get(alert_id)

        with patch.object(repository, "get_alert", new=_get):
            await asyncio.gather(
                manager.record_action(alert.alert_id, "inspected", "operator-7"),
                manager.record_action(alert.alert_id, "photographed", "operator-8"),
            )

        assert seen == [1, 1]
        assert manager._locks == {}
        assert len(repository.alerts[alert.alert_id].actions) == 2

    @pytest.mark.asyncio
    async def test_failed_transition_releases_lock(self, manager, repository):
        alert = make_alert()
        await repository.save_alert(alert)
        await manager.resolve(alert.alert_id, "operator-7")

        with pytest.raises(InvalidTransitionError):
            await manager.acknowledge(alert.alert_id, "operator-8")

        assert manager._locks == {}


class TestQueries:
    """Grouping and summary"""

    @pytest.mark.asyncio
    async def test_grouped_by_priority(self, manager, repository, minutes_ago):
        await repository.save_alert(make_alert(AlertPriority.HIGH, minutes_ago(10), alert_id="A1"))
        await repository.save_alert(make_alert(AlertPriority.HIGH, minutes_ago(1), alert_id="A2"))
        await repository.save_alert(make_alert(AlertPriority.LOW, minutes_ago(1), alert_id="A3"))
        await repository.save_alert(
            make_alert(AlertPriority.CRITICAL, minutes_ago(1), status=AlertStatus.RESOLVED, alert_id="A4")
        )

        groups = await manager.get_active_alerts_grouped()

        assert list(groups) == [
            AlertPriority.CRITICAL,
            AlertPriority.HIGH,
            AlertPriority.MEDIUM,
            AlertPriority.LOW,
        ]
        assert groups[AlertPriority.CRITICAL] == []
        assert [a.alert_id for a in groups[AlertPriority.HIGH]] == ["A2", "A1"]
        assert [a.alert_id for a in groups[AlertPriority.LOW]] == ["A3"]

    @pytest.mark.asyncio
    async def test_summary(self, manager, repository, minutes_ago):
        await repository.save_alert(make_alert(AlertPriority.HIGH, minutes_ago(10), alert_id="A1"))
        await repository.save_alert(make_alert(AlertPriority.HIGH, minutes_ago(1), alert_id="A2"))
        await repository.save_alert(
            make_alert(AlertPriority.MEDIUM, minutes_ago(1), status=AlertStatus.ACKNOWLEDGED, alert_id="A3")
        )

        summary = await manager.get_alert_summary(now=NOW)

        assert summary["open_alerts"] == 3
        assert summary["active_alerts"] == 2
        assert summary["escalated_alerts"] == 0
        assert summary["alerts_needing_escalation"] == 1
        assert summary["priority_distribution"] == {
            "LOW": 0,
            "MEDIUM": 1,
            "HIGH": 2,
            "CRITICAL": 0,
        }
