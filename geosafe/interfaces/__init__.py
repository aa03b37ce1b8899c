"""
Abstract interfaces for the risk engine.

The core depends on two collaborators that it does not own: a persistence
layer (Repository) and a publish/subscribe broadcaster (Broadcaster).

Modules:
    repository: Repository ABC for readings, alerts and sensors
    broadcaster: Broadcaster ABC and topic names
"""

from geosafe.interfaces.broadcaster import Broadcaster, BroadcastTopic
from geosafe.interfaces.repository import Repository

__all__: list[str] = [
    "Broadcaster",
    "BroadcastTopic",
    "Repository",
]
