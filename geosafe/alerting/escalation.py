"""
Periodic auto-escalation of unattended alerts.

Every sweep tick queries ACTIVE alerts whose age exceeds the threshold for
their priority and escalates each of them once. A tick that fires while the
previous sweep is still running is skipped rather than queued, so two sweeps
never overlap.

Example:
    >>> sweeper = EscalationSweeper(manager, repository, config.alerts.escalation)
    >>> escalated = await sweeper.run_once()
    >>> await sweeper.run(shutdown_event)
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import structlog

from geosafe.alerting.manager import AlertManager
from geosafe.config.models import EscalationConfig
from geosafe.exceptions import InvalidTransitionError, NotFoundError, StaleAlertError
from geosafe.interfaces.repository import Repository
from geosafe.models.alerts import Alert

logger = structlog.get_logger(__name__)


class EscalationSweeper:
    """
    Escalates overdue ACTIVE alerts on a fixed interval.

    Attributes:
        manager: Alert manager performing the escalations.
        repository: Source of overdue alerts.
        config: Sweep interval, thresholds, clock and escalation target.
    """

    def __init__(
        self,
        manager: AlertManager,
        repository: Repository,
        config: Optional[EscalationConfig] = None,
    ) -> None:
        self.manager = manager
        self.repository = repository
        self.config = config or EscalationConfig()
        self._current: Optional[asyncio.Task] = None
        self._sweeps_run = 0
        self._sweeps_skipped = 0

    @property
    def is_running(self) -> bool:
        """Check if a sweep is currently in progress."""
        return self._current is not None and not self._current.done()

    async def run_once(self, now: Optional[datetime] = None) -> List[Alert]:
        """
        Run one sweep.

        Each overdue alert is re-checked under its lock before escalating,
        so an alert acknowledged or escalated since the query is skipped.
        A failure on one alert does not stop the sweep.

        Args:
            now: Sweep time, defaults to now.

        Returns:
            List[Alert]: Alerts escalated by this sweep.
        """
        now = now or datetime.now(timezone.utc)
        thresholds = self.config.thresholds_minutes
        clock = self.config.measure_from

        due = await self.repository.find_active_alerts_needing_escalation(
            now, thresholds, clock
        )

        escalated: List[Alert] = []
        for alert in due:
            try:
                result = await self.manager.escalate_if_due(
                    alert.alert_id,
                    self.config.escalated_to,
                    now,
                    thresholds,
                    clock,
                )
            except (InvalidTransitionError, StaleAlertError, NotFoundError) as e:
                logger.warning(
                    "auto_escalation_skipped",
                    alert_id=alert.alert_id,
                    error=str(e),
                )
                continue

            if result is not None:
                escalated.append(result)

        self._sweeps_run += 1
        logger.info(
            "escalation_sweep_completed",
            candidates=len(due),
            escalated=len(escalated),
        )
        return escalated

    async def _guarded_sweep(self) -> None:
        try:
            await self.run_once()
        except Exception as e:
            logger.error("escalation_sweep_failed", error=str(e))

    def tick(self) -> bool:
        """
        Start a sweep in the background unless one is still running.

        Returns:
            bool: True if a sweep was started, False if the tick was skipped.
        """
        if self.is_running:
            self._sweeps_skipped += 1
            logger.warning(
                "escalation_sweep_skipped",
                reason="previous sweep still running",
                skipped_total=self._sweeps_skipped,
            )
            return False

        self._current = asyncio.create_task(self._guarded_sweep())
        return True

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """
        Tick every sweep_interval_seconds until shutdown is requested.

        Args:
            shutdown_event: Set to stop the loop.
        """
        interval = self.config.sweep_interval_seconds
        logger.info("escalation_loop_started", interval_seconds=interval)

        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.tick()

        await self.stop()
        logger.info("escalation_loop_stopped", sweeps_run=self._sweeps_run)

    async def stop(self) -> None:
        """Wait for an in-flight sweep to finish."""
        if self._current is not None and not self._current.done():
            await self._current

    def get_stats(self) -> dict:
        """Sweep counters, for diagnostics."""
        return {
            "sweeps_run": self._sweeps_run,
            "sweeps_skipped": self._sweeps_skipped,
            "running": self.is_running,
        }
