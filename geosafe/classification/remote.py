"""
Remote risk classifier.

Thin strategy over PredictionClient. Retrying is the client's job; this
class makes a single predict() call and lets PredictionUnavailableError
propagate so the caller can substitute the fallback.
"""

from typing import TYPE_CHECKING

from geosafe.classification.base import RiskClassifier
from geosafe.models.readings import Classification, Reading

if TYPE_CHECKING:
    from geosafe.prediction.client import PredictionClient


class RemoteClassifier(RiskClassifier):
    """
    Classifier backed by the remote prediction service.

    Attributes:
        client: Prediction client used for every call.

    Example:
        >>> classifier = RemoteClassifier(prediction_client)
        >>> classification = await classifier.classify(reading)
    """

    def __init__(self, client: "PredictionClient") -> None:
        self.client = client

    @property
    def name(self) -> str:
        return "remote"

    async def classify(self, reading: Reading) -> Classification:
        """
        Classify via the prediction service.

        Raises:
            PredictionUnavailableError: If the client exhausted its attempts
                or the request was rejected.
        """
        return await self.client.predict(reading)
