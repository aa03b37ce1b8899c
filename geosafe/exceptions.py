"""
Domain exceptions for the risk engine.

Storage and configuration errors live beside their clients
(RedisClientError, PostgresClientError, ConfigLoadError). This module holds
the errors that cross component boundaries.

Hierarchy:
    GeoSafeError
    ├── ValidationError
    │   └── BatchSizeError
    ├── NotFoundError
    ├── PredictionUnavailableError
    │   └── PredictionRejectedError
    ├── MalformedResponseError
    ├── InvalidTransitionError
    └── StaleAlertError
"""

from typing import List, Optional


class GeoSafeError(Exception):
    """Base exception for risk engine errors."""

    pass


class ValidationError(GeoSafeError):
    """
    Raised when input values fall outside their allowed ranges.

    Attributes:
        errors: One message per offending field.
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        super().__init__(message)


class BatchSizeError(ValidationError):
    """Raised when a batch is empty or larger than the configured limit."""

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"Batch size {size} outside allowed range 1..{max_size}",
            errors=[f"batch: {size} items, maximum {max_size}"],
        )


class NotFoundError(GeoSafeError):
    """Raised when a sensor or alert does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class PredictionUnavailableError(GeoSafeError):
    """
    Raised when the remote prediction service could not produce a result.

    Attributes:
        attempts: Number of attempts made.
        elapsed_ms: Total time spent across attempts and backoff delays.
        last_error: The failure seen on the final attempt.
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        elapsed_ms: float,
        last_error: Optional[Exception] = None,
    ):
        self.attempts = attempts
        self.elapsed_ms = elapsed_ms
        self.last_error = last_error
        super().__init__(message)


class PredictionRejectedError(PredictionUnavailableError):
    """Raised when the prediction service rejects the request with a 4xx status."""

    def __init__(
        self,
        status: int,
        elapsed_ms: float,
        last_error: Optional[Exception] = None,
    ):
        self.status = status
        super().__init__(
            f"Prediction request rejected with status {status}",
            attempts=1,
            elapsed_ms=elapsed_ms,
            last_error=last_error,
        )


class MalformedResponseError(GeoSafeError):
    """Raised when a prediction payload fails validation."""

    pass


class InvalidTransitionError(GeoSafeError):
    """
    Raised when an alert lifecycle operation is illegal for the alert's state.

    Attributes:
        alert_id: The alert the operation targeted.
        operation: The attempted operation (acknowledge, resolve, escalate).
        status: The alert status at the time of the attempt.
        reason: Why the transition was refused.
    """

    def __init__(self, alert_id: str, operation: str, status: str, reason: str):
        self.alert_id = alert_id
        self.operation = operation
        self.status = status
        self.reason = reason
        super().__init__(
            f"Cannot {operation} alert {alert_id} in status {status}: {reason}"
        )


class StaleAlertError(GeoSafeError):
    """Raised when an alert write is based on an outdated version."""

    def __init__(self, alert_id: str, expected_version: int):
        self.alert_id = alert_id
        self.expected_version = expected_version
        super().__init__(
            f"Alert {alert_id} was modified concurrently (expected version {expected_version})"
        )
