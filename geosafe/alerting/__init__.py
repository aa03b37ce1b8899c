"""
Alert lifecycle and escalation.

Provides:
    - AlertManager: Creation and transitions of alerts
    - EscalationSweeper: Periodic auto-escalation of overdue alerts
"""

from geosafe.alerting.escalation import EscalationSweeper
from geosafe.alerting.manager import AlertManager, create_alert_manager

__all__: list[str] = [
    "AlertManager",
    "EscalationSweeper",
    "create_alert_manager",
]
