"""
Pub/sub reading consumer.

Feeds readings published on a Redis channel into the IngestionCoordinator.
Each message becomes its own task, with at most max_in_flight running at
once, so a reading stuck in prediction retries does not hold up the others.

If the subscription fails or ends before shutdown is requested,
SubscriptionLostError is raised; the service process exits and its
supervisor restarts it.

Example:
    >>> consumer = ReadingConsumer(
    ...     coordinator,
    ...     subscribe=redis_client.subscribe,
    ...     channel="readings:incoming",
    ... )
    >>> await consumer.run(shutdown_event)
"""

import asyncio
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional, Set

import structlog
from pydantic import ValidationError as PydanticValidationError

from geosafe.exceptions import GeoSafeError
from geosafe.ingestion.coordinator import IngestionCoordinator
from geosafe.models.readings import Reading

logger = structlog.get_logger(__name__)

Subscribe = Callable[[List[str]], AsyncContextManager[AsyncIterator[Dict[str, Any]]]]


class SubscriptionLostError(Exception):
    """The reading subscription stopped before shutdown was requested."""

    def __init__(self, channel: str, cause: Optional[BaseException] = None):
        self.channel = channel
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Subscription to {channel} ended{detail}")


class ReadingConsumer:
    """
    Concurrent consumer of reading messages.

    Attributes:
        coordinator: Pipeline each reading goes through.
        channel: Channel readings are published on.
        max_in_flight: Readings ingested at the same time.
    """

    def __init__(
        self,
        coordinator: IngestionCoordinator,
        subscribe: Subscribe,
        channel: str,
        max_in_flight: int = 20,
    ) -> None:
        self.coordinator = coordinator
        self.channel = channel
        self.max_in_flight = max_in_flight
        self._subscribe = subscribe
        self._slots = asyncio.Semaphore(max_in_flight)
        self._in_flight: Set["asyncio.Task[None]"] = set()
        self._stats = {"received": 0, "ingested": 0, "invalid": 0, "rejected": 0, "failed": 0}

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """
        Consume until shutdown_event is set, then let in-flight readings finish.

        Raises:
            SubscriptionLostError: If the subscription fails or ends first.
        """
        listener = asyncio.create_task(self._listen())
        stopper = asyncio.create_task(shutdown_event.wait())

        try:
            await asyncio.wait({listener, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not listener.done():
                listener.cancel()
            await asyncio.gather(listener, stopper, return_exceptions=True)
            await self._drain()

        if listener.cancelled():
            logger.info("reading_consumer_stopped", **self._stats)
            return

        cause = listener.exception()
        logger.error(
            "reading_subscription_lost",
            channel=self.channel,
            error=str(cause) if cause is not None else "message stream ended",
        )
        raise SubscriptionLostError(self.channel, cause) from cause

    async def _listen(self) -> None:
        async with self._subscribe([self.channel]) as messages:
            logger.info(
                "reading_consumer_listening",
                channel=self.channel,
                max_in_flight=self.max_in_flight,
            )
            async for message in messages:
                self._stats["received"] += 1
                await self._slots.acquire()
                task = asyncio.create_task(self._handle(message))
                self._in_flight.add(task)
                task.add_done_callback(self._release)

    def _release(self, task: "asyncio.Task[None]") -> None:
        self._in_flight.discard(task)
        self._slots.release()

    async def _drain(self) -> None:
        if not self._in_flight:
            return
        logger.info("reading_consumer_draining", in_flight=len(self._in_flight))
        await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _handle(self, message: Dict[str, Any]) -> None:
        """Ingest one message. Failures are logged and counted, never raised."""
        try:
            reading = Reading.model_validate(message.get("data", {}))
        except PydanticValidationError as e:
            self._stats["invalid"] += 1
            logger.warning("reading_message_invalid", channel=self.channel, error=str(e))
            return

        try:
            await self.coordinator.ingest(reading)
        except GeoSafeError as e:
            self._stats["rejected"] += 1
            logger.warning(
                "reading_rejected",
                sensor_id=reading.sensor_id,
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception as e:
            self._stats["failed"] += 1
            logger.exception("reading_ingest_crashed", sensor_id=reading.sensor_id, error=str(e))
        else:
            self._stats["ingested"] += 1

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, int]:
        """Message counters, for diagnostics."""
        return dict(self._stats, in_flight=self.in_flight)
