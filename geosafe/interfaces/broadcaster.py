"""
Abstract publish/subscribe interface for real-time updates.

Delivery is best effort. Subscribers that miss messages re-fetch current
state through the repository rather than relying on replay.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict


class BroadcastTopic(str, Enum):
    """Topics published by the risk engine."""

    READING_INGESTED = "reading-ingested"
    RISK_CLASSIFIED = "risk-classified"
    ALERT_CREATED = "alert-created"
    ALERT_ACKNOWLEDGED = "alert-acknowledged"
    ALERT_RESOLVED = "alert-resolved"
    ALERT_ESCALATED = "alert-escalated"
    ALERT_ACTION_RECORDED = "alert-action-recorded"


class Broadcaster(ABC):
    """
    Publish handle passed explicitly to components that emit updates.

    Implementations are created at process start and closed at shutdown.
    """

    @abstractmethod
    async def publish(self, topic: BroadcastTopic, payload: Dict[str, Any]) -> None:
        """
        Publish a payload on a topic.

        Args:
            topic: Topic to publish on.
            payload: JSON-serializable message body.
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the broadcaster."""
        return None
