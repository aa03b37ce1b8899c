"""
Remote risk prediction service client.

Wraps the external prediction service with per-attempt timeouts, retry with
exponential backoff, and response validation.

Endpoints:
    POST /predict         Single prediction
    POST /predict/batch   Up to 50 predictions
    GET  /model/info      Model metadata
    GET  /health          Liveness (short timeout)

Retry Policy:
    - Up to retry.max_attempts attempts per call
    - 4xx responses fail immediately (the request itself is invalid)
    - Timeouts, 5xx, connection errors and malformed payloads are retried
      after base_delay * 2^(attempt-1) seconds
    - Exhaustion raises PredictionUnavailableError carrying the attempt
      count and elapsed time

Malformed payloads and transport failures are logged under distinct events
so a local format defect is never mistaken for remote unavailability.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import aiohttp
import structlog

from geosafe.config.models import PredictionConfig
from geosafe.exceptions import (
    BatchSizeError,
    MalformedResponseError,
    PredictionRejectedError,
    PredictionUnavailableError,
)
from geosafe.models.readings import Classification, Reading
from geosafe.prediction.normalizer import (
    extract_batch_predictions,
    format_batch_payload,
    format_prediction_payload,
    parse_prediction,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PredictionServiceError(Exception):
    """
    A single failed attempt against the prediction service.

    Attributes:
        status: HTTP status, or None for timeouts and connection errors.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        """Check if the service rejected the request itself (4xx)."""
        return self.status is not None and 400 <= self.status < 500


class PredictionClient:
    """
    Async client for the remote prediction service.

    Attributes:
        config: Prediction configuration (endpoint, retry, batch limits).
        base_url: Service base URL without trailing slash.

    Example:
        >>> client = PredictionClient(config.prediction)
        >>> try:
        ...     classification = await client.predict(reading)
        ... except PredictionUnavailableError as e:
        ...     print(f"Gave up after {e.attempts} attempts")
        ... finally:
        ...     await client.close()
    """

    def __init__(self, config: PredictionConfig) -> None:
        """
        Initialize the prediction client.

        Args:
            config: Prediction configuration.
        """
        self.config = config
        self.base_url = config.service.base_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(
            "prediction_client_initialized",
            base_url=self.base_url,
            timeout_seconds=config.service.timeout_seconds,
            max_attempts=config.retry.max_attempts,
        )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.service.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": "geosafe-risk-engine/1.0",
                },
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("prediction_client_session_closed", base_url=self.base_url)

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Any:
        """
        Make one HTTP request.

        Args:
            method: HTTP method (GET, POST).
            endpoint: API endpoint path.
            payload: JSON body.
            timeout_seconds: Per-attempt timeout, defaults to service.timeout_seconds.

        Returns:
            Any: Parsed JSON response.

        Raises:
            PredictionServiceError: If the request fails or returns >= 400.
            MalformedResponseError: If the body is not valid JSON.
        """
        session = await self._ensure_session()
        url = f"{self.base_url}{endpoint}"
        effective_timeout = timeout_seconds or self.config.service.timeout_seconds
        timeout = aiohttp.ClientTimeout(total=effective_timeout)

        try:
            async with session.request(
                method, url, json=payload, timeout=timeout
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise PredictionServiceError(
                        f"Prediction service returned {response.status}: {error_text[:200]}",
                        status=response.status,
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise MalformedResponseError(
                        f"Prediction service returned invalid JSON: {e}"
                    ) from e

        except aiohttp.ClientError as e:
            raise PredictionServiceError(f"Prediction request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise PredictionServiceError(
                f"Prediction request timeout after {effective_timeout}s"
            ) from e

    async def _with_retry(
        self,
        operation: str,
        attempt_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run an attempt function under the retry policy.

        Args:
            operation: Name of the operation for logging.
            attempt_fn: Performs one request and validates its response.

        Returns:
            T: Result of the first successful attempt.

        Raises:
            PredictionRejectedError: On a 4xx response (after one attempt).
            PredictionUnavailableError: When all attempts fail.
        """
        max_attempts = self.config.retry.max_attempts
        start_time = time.monotonic()
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await attempt_fn()

            except PredictionServiceError as e:
                last_error = e
                if e.is_client_error:
                    elapsed_ms = (time.monotonic() - start_time) * 1000
                    logger.error(
                        "prediction_request_rejected",
                        operation=operation,
                        status=e.status,
                        error=str(e),
                    )
                    raise PredictionRejectedError(
                        status=e.status,  # type: ignore[arg-type]
                        elapsed_ms=round(elapsed_ms, 2),
                        last_error=e,
                    ) from e

                logger.warning(
                    "prediction_attempt_failed",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    status=e.status,
                    error=str(e),
                )

            except MalformedResponseError as e:
                last_error = e
                logger.warning(
                    "prediction_response_malformed",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                )

            if attempt < max_attempts:
                delay = self.config.retry.delay_for(attempt)
                logger.info(
                    "prediction_retry_scheduled",
                    operation=operation,
                    attempt=attempt,
                    delay_seconds=delay,
                )
                await asyncio.sleep(delay)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.error(
            "prediction_unavailable",
            operation=operation,
            attempts=max_attempts,
            elapsed_ms=round(elapsed_ms, 2),
            error=str(last_error),
        )
        raise PredictionUnavailableError(
            f"Prediction '{operation}' failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
            elapsed_ms=round(elapsed_ms, 2),
            last_error=last_error,
        )

    async def predict(self, reading: Reading) -> Classification:
        """
        Get a risk prediction for one reading.

        Args:
            reading: Validated reading.

        Returns:
            Classification: Validated remote classification.

        Raises:
            PredictionRejectedError: If the service rejected the request.
            PredictionUnavailableError: If all attempts failed.
        """
        payload = format_prediction_payload(reading)
        start_time = time.monotonic()

        async def _attempt() -> Classification:
            data = await self._request("POST", "/predict", payload)
            elapsed_ms = (time.monotonic() - start_time) * 1000
            return parse_prediction(data, processing_time_ms=round(elapsed_ms, 2))

        classification = await self._with_retry("predict", _attempt)

        logger.info(
            "prediction_completed",
            sensor_id=reading.sensor_id,
            level=classification.level.value,
            confidence=classification.confidence,
            processing_time_ms=classification.processing_time_ms,
        )
        return classification

    async def predict_batch(
        self, readings: List[Reading]
    ) -> List[Optional[Classification]]:
        """
        Get risk predictions for up to batch.max_size readings in one call.

        The batch as a whole is retried; individual items that fail
        validation inside a successful response are returned as None and
        are not retried.

        Args:
            readings: Validated readings.

        Returns:
            List[Optional[Classification]]: One entry per reading, in order.

        Raises:
            BatchSizeError: If the batch is empty or too large.
            PredictionRejectedError: If the service rejected the request.
            PredictionUnavailableError: If all attempts failed.
        """
        max_size = self.config.batch.max_size
        if not readings or len(readings) > max_size:
            raise BatchSizeError(len(readings), max_size)

        payload = format_batch_payload(readings)
        start_time = time.monotonic()

        async def _attempt() -> List[Any]:
            data = await self._request("POST", "/predict/batch", payload)
            return extract_batch_predictions(data, expected=len(readings))

        raw_predictions = await self._with_retry("predict_batch", _attempt)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        per_item_ms = round(elapsed_ms / len(readings), 2)

        results: List[Optional[Classification]] = []
        for index, raw in enumerate(raw_predictions):
            try:
                results.append(parse_prediction(raw, processing_time_ms=per_item_ms))
            except MalformedResponseError as e:
                logger.warning(
                    "batch_item_malformed",
                    index=index,
                    sensor_id=readings[index].sensor_id,
                    error=str(e),
                )
                results.append(None)

        logger.info(
            "batch_prediction_completed",
            count=len(readings),
            failed=sum(1 for r in results if r is None),
            elapsed_ms=round(elapsed_ms, 2),
        )
        return results

    async def get_model_info(self) -> Dict[str, Any]:
        """
        Get model metadata from the service.

        Returns:
            Dict[str, Any]: Model information as reported by the service.

        Raises:
            PredictionServiceError: If the request fails.
            MalformedResponseError: If the body is not a JSON object.
        """
        data = await self._request("GET", "/model/info")
        if not isinstance(data, dict):
            raise MalformedResponseError("Model info response is not an object")
        return data

    async def health_check(self) -> bool:
        """
        Check whether the service is reachable.

        Returns:
            bool: True if /health answered successfully within the health timeout.
        """
        try:
            await self._request(
                "GET",
                "/health",
                timeout_seconds=self.config.service.health_timeout_seconds,
            )
            return True
        except (PredictionServiceError, MalformedResponseError) as e:
            logger.warning("prediction_health_check_failed", error=str(e))
            return False

    def get_status(self) -> Dict[str, Any]:
        """Current client configuration, for diagnostics."""
        return {
            "base_url": self.base_url,
            "timeout_seconds": self.config.service.timeout_seconds,
            "max_attempts": self.config.retry.max_attempts,
            "base_delay_seconds": self.config.retry.base_delay_seconds,
            "session_open": self._session is not None and not self._session.closed,
        }


async def create_prediction_client(config: PredictionConfig) -> PredictionClient:
    """
    Factory function to create a PredictionClient.

    Args:
        config: Prediction configuration.

    Returns:
        PredictionClient: A new client instance.
    """
    return PredictionClient(config)
