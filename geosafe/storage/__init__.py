"""
Storage layer.

Provides:
    - PostgresClient: System of record for sensors, readings and alerts
    - RedisClient: Alert mirror, latest-reading and sensor caches, pub/sub
    - StorageRepository: Repository over both
"""

from geosafe.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresConnectionException,
    PostgresOperationError,
)
from geosafe.storage.redis_client import (
    RedisClient,
    RedisClientError,
    RedisConnectionException,
    RedisOperationError,
)
from geosafe.storage.repository import StorageRepository, create_storage_repository

__all__: list[str] = [
    "PostgresClient",
    "PostgresClientError",
    "PostgresConnectionException",
    "PostgresOperationError",
    "RedisClient",
    "RedisClientError",
    "RedisConnectionException",
    "RedisOperationError",
    "StorageRepository",
    "create_storage_repository",
]
