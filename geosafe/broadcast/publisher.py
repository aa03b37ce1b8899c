"""
Redis pub/sub broadcaster.

Publishes each topic on its own channel, `updates:{topic}`, as a JSON
envelope:

    {"topic": "alert-created", "published_at": "...", "payload": {...}}

Publish errors propagate. Callers that treat broadcasting as best effort
catch and log them.
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog

from geosafe.interfaces.broadcaster import Broadcaster, BroadcastTopic
from geosafe.storage.redis_client import RedisClient

logger = structlog.get_logger(__name__)


class RedisBroadcaster(Broadcaster):
    """
    Broadcaster over a connected RedisClient.

    The Redis connection is owned by the caller, so close() does not
    disconnect it.

    Example:
        >>> broadcaster = RedisBroadcaster(redis_client)
        >>> await broadcaster.publish(BroadcastTopic.ALERT_CREATED, alert.model_dump(mode="json"))
    """

    def __init__(self, redis: RedisClient) -> None:
        self.redis = redis
        self._published = 0

    async def publish(self, topic: BroadcastTopic, payload: Dict[str, Any]) -> None:
        message = {
            "topic": topic.value,
            "published_at": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }
        subscribers = await self.redis.publish(self.redis.channel_for(topic.value), message)
        self._published += 1

        logger.debug("broadcast_published", topic=topic.value, subscribers=subscribers)

    async def close(self) -> None:
        logger.info("broadcaster_closed", published=self._published)


async def create_broadcaster(redis: RedisClient) -> RedisBroadcaster:
    """Factory function to create a RedisBroadcaster."""
    return RedisBroadcaster(redis)
