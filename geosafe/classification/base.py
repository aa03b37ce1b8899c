"""
Risk classifier interface.

Two interchangeable strategies implement it: RemoteClassifier, which
delegates to the prediction service, and FallbackClassifier, which applies a
fixed local rule table. The ingestion coordinator is the only place that
chooses between them.
"""

from abc import ABC, abstractmethod

from geosafe.models.readings import Classification, Reading


class RiskClassifier(ABC):
    """Produces a Classification for a validated reading."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in logs."""
        pass

    @abstractmethod
    async def classify(self, reading: Reading) -> Classification:
        """
        Classify a reading.

        Args:
            reading: A reading whose features have passed range validation.

        Returns:
            Classification: Risk level, confidence and contributing factors.
        """
        pass
