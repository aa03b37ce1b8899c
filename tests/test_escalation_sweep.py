"""Auto-escalation sweep tests."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from geosafe.alerting import AlertManager, EscalationSweeper
from geosafe.config.models import EscalationConfig
from geosafe.models.alerts import AlertPriority, AlertStatus, EscalationClock
from tests.conftest import NOW, make_alert


@pytest.fixture
def manager(repository, broadcaster):
    return AlertManager(repository, broadcaster)


class TestRunOnce:
    """Single sweep behaviour"""

    @pytest.mark.asyncio
    async def test_overdue_high_alert_escalates_once(self, manager, repository, minutes_ago):
        await repository.save_alert(make_alert(AlertPriority.HIGH, minutes_ago(6), alert_id="A1"))
        await repository.save_alert(make_alert(AlertPriority.MEDIUM, minutes_ago(10), alert_id="A2"))
        await repository.save_alert(
            make_alert(AlertPriority.HIGH, minutes_ago(60), alert_id="A3").acknowledge("operator-7")
        )
        sweeper = EscalationSweeper(manager, repository)

        escalated = await sweeper.run_once(now=NOW)

        assert [a.alert_id for a in escalated] == ["A1"]
        alert = repository.alerts["A1"]
        assert alert.escalation.level == 1
        assert alert.escalation.escalated_to == "SYSTEM_AUTO_ESCALATION"
        assert alert.escalation.escalated_at == NOW
        assert alert.priority == AlertPriority.CRITICAL
        assert repository.alerts["A2"].escalation.level == 0
        assert repository.alerts["A3"].escalation.level == 0

    @pytest.mark.asyncio
    async def test_trigger_clock_keeps_escalating_overdue_alert(self, manager, repository, minutes_ago):
        """Measured from trigger time, a still-overdue alert escalates on every tick"""
        await repository.save_alert(make_alert(AlertPriority.HIGH, minutes_ago(6), alert_id="A1"))
        sweeper = EscalationSweeper(manager, repository)

        await sweeper.run_once(now=NOW)
        await sweeper.run_once(now=NOW + timedelta(minutes=1))

        assert repository.alerts["A1"].escalation.level == 2

    @pytest.mark.asyncio
    async def test_last_escalation_clock_waits_for_threshold(self, manager, repository, minutes_ago):
        await repository.save_alert(make_alert(AlertPriority.HIGH, minutes_ago(6), alert_id="A1"))
        config = EscalationConfig(measure_from=EscalationClock.LAST_ESCALATION)
        sweeper = EscalationSweeper(manager, repository, config)

        await sweeper.run_once(now=NOW)
        assert await sweeper.run_once(now=NOW + timedelta(minutes=1)) == []
        assert repository.alerts["A1"].escalation.level == 1

        # CRITICAL threshold is 2 minutes
        await sweeper.run_once(now=NOW + timedelta(minutes=3))
        assert repository.alerts["A1"].escalation.level == 2

    @pytest.mark.asyncio
    async def test_alert_acknowledged_since_query_is_left_alone(self, manager, repository, minutes_ago):
        """The due check is repeated under the alert's lock"""
        overdue = make_alert(AlertPriority.HIGH, minutes_ago(6), alert_id="A1")
        await repository.save_alert(overdue)
        acknowledged = overdue.acknowledge("operator-7").model_copy(update={"version": 1})
        await repository.save_alert(acknowledged)
        sweeper = EscalationSweeper(manager, repository)

        stale_query = AsyncMock(return_value=[overdue])
        with patch.object(repository, "find_active_alerts_needing_escalation", new=stale_query):
            escalated = await sweeper.run_once(now=NOW)

        assert escalated == []
        assert repository.alerts["A1"].status == AlertStatus.ACKNOWLEDGED
        assert repository.alerts["A1"].escalation.level == 0

    @pytest.mark.asyncio
    async def test_missing_alert_does_not_stop_sweep(self, manager, repository, minutes_ago):
        ghost = make_alert(AlertPriority.HIGH, minutes_ago(6), alert_id="GHOST")
        real = make_alert(AlertPriority.HIGH, minutes_ago(6), alert_id="A1")
        await repository.save_alert(real)
        sweeper = EscalationSweeper(manager, repository)

        query = AsyncMock(return_value=[ghost, real])
        with patch.object(repository, "find_active_alerts_needing_escalation", new=query):
            escalated = await sweeper.run_once(now=NOW)

        assert [a.alert_id for a in escalated] == ["A1"]


class TestScheduling:
    """Tick and loop behaviour"""

    @pytest.mark.asyncio
    async def test_tick_skipped_while_sweep_running(self, manager, repository):
        release = asyncio.Event()

        async def _slow_query(*args, **kwargs):
            await release.wait()
            return []

        sweeper = EscalationSweeper(manager, repository)
        with patch.object(repository, "find_active_alerts_needing_escalation", new=_slow_query):
            assert sweeper.tick() is True
            await asyncio.sleep(0)
            assert sweeper.is_running
            assert sweeper.tick() is False

            release.set()
            await sweeper.stop()

        stats = sweeper.get_stats()
        assert stats["sweeps_run"] == 1
        assert stats["sweeps_skipped"] == 1
        assert stats["running"] is False

    @pytest.mark.asyncio
    async def test_failed_sweep_is_contained(self, manager, repository):
        failing = AsyncMock(side_effect=RuntimeError("database unavailable"))
        sweeper = EscalationSweeper(manager, repository)

        with patch.object(repository, "find_active_alerts_needing_escalation", new=failing):
            sweeper.tick()
            await sweeper.stop()

        assert sweeper.get_stats()["sweeps_run"] == 0
        assert sweeper.tick() is True
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_run_stops_on_shutdown(self, manager, repository):
        sweeper = EscalationSweeper(
            manager, repository, EscalationConfig(sweep_interval_seconds=0.01)
        )
        shutdown_event = asyncio.Event()

        task = asyncio.create_task(sweeper.run(shutdown_event))
        await asyncio.sleep(0.05)
        shutdown_event.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert sweeper.get_stats()["sweeps_run"] >= 1
        assert not sweeper.is_running
