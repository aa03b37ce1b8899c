"""
Configuration management for the risk engine.

This module handles loading and validating configuration from YAML files.
All configuration values are validated using Pydantic models to ensure
type safety and catch configuration errors early.

Configuration is loaded from YAML files in the config/ directory:
    - prediction.yaml: Prediction service and retry policy
    - alerts.yaml: Alert creation and escalation policy
    - features.yaml: Ingestion, storage and logging settings

Environment variables can override connection settings:
    - PREDICTION_SERVICE_URL: Prediction service base URL
    - PREDICTION_SERVICE_TIMEOUT: Per-attempt timeout in seconds
    - REDIS_URL: Redis connection URL
    - DATABASE_URL: PostgreSQL connection URL
    - LOG_LEVEL: Application log level

Example:
    >>> from geosafe.config import load_config, AppConfig
    >>> config = load_config()
    >>> config.alerts.escalation.threshold_for(AlertPriority.CRITICAL)
    2.0
"""

from geosafe.config.loader import ConfigLoadError, ConfigLoader, load_config
from geosafe.config.models import (
    # Enums
    LogFormat,
    LogLevel,
    # Prediction config
    BatchConfig,
    PredictionConfig,
    PredictionServiceConfig,
    RetryConfig,
    # Alert config
    DEFAULT_ESCALATION_THRESHOLDS,
    AlertCreationConfig,
    AlertsConfig,
    EscalationConfig,
    # Features config
    FeaturesConfig,
    IngestionConfig,
    LoggingConfig,
    RedisStorageConfig,
    StorageConfig,
    # Connection config
    PostgresConnectionConfig,
    RedisConnectionConfig,
    # Root config
    AppConfig,
)

__all__: list[str] = [
    # Loader
    "load_config",
    "ConfigLoader",
    "ConfigLoadError",
    # Enums
    "LogFormat",
    "LogLevel",
    # Prediction config
    "PredictionServiceConfig",
    "RetryConfig",
    "BatchConfig",
    "PredictionConfig",
    # Alert config
    "DEFAULT_ESCALATION_THRESHOLDS",
    "EscalationConfig",
    "AlertCreationConfig",
    "AlertsConfig",
    # Features config
    "IngestionConfig",
    "RedisStorageConfig",
    "StorageConfig",
    "LoggingConfig",
    "FeaturesConfig",
    # Connection config
    "RedisConnectionConfig",
    "PostgresConnectionConfig",
    # Root config
    "AppConfig",
]
