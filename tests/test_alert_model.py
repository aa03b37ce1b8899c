"""Alert lifecycle transition tests."""

from datetime import timedelta

import pytest

from geosafe.config.models import DEFAULT_ESCALATION_THRESHOLDS
from geosafe.exceptions import InvalidTransitionError
from geosafe.models.alerts import (
    AlertPriority,
    AlertStatus,
    EscalationClock,
    build_alert_id,
)
from tests.conftest import NOW, make_alert


class TestLifecycle:
    """Status transitions"""

    def test_acknowledge_then_resolve(self):
        alert = make_alert()

        acknowledged = alert.acknowledge("operator-7", timestamp=NOW)
        assert acknowledged.status == AlertStatus.ACKNOWLEDGED
        assert acknowledged.acknowledged_by == "operator-7"
        assert acknowledged.acknowledged_at == NOW

        resolved = acknowledged.resolve("operator-7", timestamp=NOW)
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_by == "operator-7"
        assert resolved.is_terminal

    def test_transitions_do_not_mutate(self):
        """The original alert is unchanged after a transition"""
        alert = make_alert()
        alert.acknowledge("operator-7")
        assert alert.status == AlertStatus.ACTIVE
        assert alert.acknowledged_by is None

    def test_resolve_directly_as_false_positive(self):
        resolved = make_alert().resolve("geologist", resolution=AlertStatus.FALSE_POSITIVE)
        assert resolved.status == AlertStatus.FALSE_POSITIVE

    def test_resolution_must_be_terminal(self):
        with pytest.raises(ValueError):
            make_alert().resolve("geologist", resolution=AlertStatus.ACKNOWLEDGED)

    def test_acknowledge_twice_rejected(self):
        acknowledged = make_alert().acknowledge("operator-7")
        with pytest.raises(InvalidTransitionError) as exc_info:
            acknowledged.acknowledge("operator-8")
        assert exc_info.value.status == "ACKNOWLEDGED"

    @pytest.mark.parametrize("status", [AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE])
    def test_closed_alerts_refuse_transitions(self, status):
        """Nothing but the action log moves a closed alert"""
        alert = make_alert(status=status)

        with pytest.raises(InvalidTransitionError):
            alert.acknowledge("operator-7")
        with pytest.raises(InvalidTransitionError):
            alert.resolve("operator-7")
        with pytest.raises(InvalidTransitionError):
            alert.escalate("supervisor")

        logged = alert.record_action("site_inspected", "geologist", timestamp=NOW)
        assert len(logged.actions) == 1

    def test_acknowledged_alert_cannot_escalate(self):
        acknowledged = make_alert().acknowledge("operator-7")
        with pytest.raises(InvalidTransitionError):
            acknowledged.escalate("supervisor")


class TestEscalation:
    """Escalation levels and priority stepping"""

    def test_each_escalation_raises_priority(self):
        alert = make_alert(priority=AlertPriority.LOW)

        first = alert.escalate("shift-lead", timestamp=NOW)
        assert first.escalation.level == 1
        assert first.priority == AlertPriority.MEDIUM
        assert first.escalation.escalated_to == "shift-lead"
        assert first.escalation.escalated_at == NOW

        second = first.escalate("supervisor")
        assert second.escalation.level == 2
        assert second.priority == AlertPriority.HIGH

        third = second.escalate("site-manager")
        assert third.escalation.level == 3
        assert third.priority == AlertPriority.CRITICAL

    def test_fourth_escalation_rejected(self):
        alert = make_alert(priority=AlertPriority.LOW)
        for target in ("a", "b", "c"):
            alert = alert.escalate(target)

        assert not alert.can_escalate
        with pytest.raises(InvalidTransitionError):
            alert.escalate("d")

    def test_critical_stays_critical(self):
        escalated = make_alert(priority=AlertPriority.CRITICAL).escalate("supervisor")
        assert escalated.priority == AlertPriority.CRITICAL
        assert escalated.escalation.level == 1


class TestNeedsEscalation:
    """Age against priority thresholds"""

    def test_high_alert_past_five_minutes(self, minutes_ago):
        alert = make_alert(priority=AlertPriority.HIGH, triggered_at=minutes_ago(6))
        assert alert.needs_escalation(NOW, DEFAULT_ESCALATION_THRESHOLDS)

    def test_threshold_is_strict(self, minutes_ago):
        alert = make_alert(priority=AlertPriority.HIGH, triggered_at=minutes_ago(5))
        assert not alert.needs_escalation(NOW, DEFAULT_ESCALATION_THRESHOLDS)

    def test_acknowledged_alert_never_due(self, minutes_ago):
        alert = make_alert(triggered_at=minutes_ago(60)).acknowledge("operator-7")
        assert not alert.needs_escalation(NOW, DEFAULT_ESCALATION_THRESHOLDS)

    def test_missing_threshold_never_due(self, minutes_ago):
        alert = make_alert(priority=AlertPriority.LOW, triggered_at=minutes_ago(600))
        assert not alert.needs_escalation(NOW, {AlertPriority.HIGH: 5.0})

    def test_last_escalation_clock(self, minutes_ago):
        """Age restarts at the most recent escalation"""
        alert = make_alert(priority=AlertPriority.MEDIUM, triggered_at=minutes_ago(60))
        escalated = alert.escalate("supervisor", timestamp=minutes_ago(3))

        assert escalated.priority == AlertPriority.HIGH
        assert escalated.needs_escalation(NOW, DEFAULT_ESCALATION_THRESHOLDS)
        assert not escalated.needs_escalation(
            NOW, DEFAULT_ESCALATION_THRESHOLDS, EscalationClock.LAST_ESCALATION
        )
        assert escalated.needs_escalation(
            NOW + timedelta(minutes=3),
            DEFAULT_ESCALATION_THRESHOLDS,
            EscalationClock.LAST_ESCALATION,
        )


class TestAlertId:
    def test_id_format(self):
        assert build_alert_id("SENSOR_001", NOW) == "ALERT_1714557600000_SENSOR_001"
