"""Real-time update publishing."""

from geosafe.broadcast.publisher import RedisBroadcaster, create_broadcaster

__all__: list[str] = [
    "RedisBroadcaster",
    "create_broadcaster",
]
