"""Service process scaffolding."""

from geosafe.services.runner import ServiceRunner, setup_logging

__all__: list[str] = [
    "ServiceRunner",
    "setup_logging",
]
