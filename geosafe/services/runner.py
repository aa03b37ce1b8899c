"""
Shared scaffolding for long-running service processes.

Provides logging setup and a ServiceRunner base class that loads
configuration, connects storage clients, installs signal handlers and drives
the `_initialize` / `_run` / `_cleanup` lifecycle of a concrete service.
"""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from geosafe.config.loader import load_config
from geosafe.config.models import AppConfig, LogFormat, LogLevel
from geosafe.storage.postgres_client import PostgresClient
from geosafe.storage.redis_client import RedisClient


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure structlog and the standard logging module.

    Args:
        config: Application config supplying format and level. Without one,
            JSON output at INFO is used.
    """
    log_format = config.features.logging.format if config else LogFormat.JSON
    log_level = config.effective_log_level if config else LogLevel.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == LogFormat.JSON
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.value),
        force=True,
    )

    # aiohttp and asyncpg are chatty at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


class ServiceRunner(ABC):
    """
    Base class for service processes.

    Attributes:
        config_path: Directory holding the YAML configuration.
        config: Loaded configuration, set by run().
        redis_client: Connected Redis client, set by run().
        postgres_client: Connected PostgreSQL client, set by run().
        shutdown_event: Set on SIGINT/SIGTERM.
        logger: Logger bound to the service name.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.redis_client: Optional[RedisClient] = None
        self.postgres_client: Optional[PostgresClient] = None
        self.shutdown_event = asyncio.Event()
        self.logger = structlog.get_logger(self.service_name).bind(service=self.service_name)

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name used in logs."""
        pass

    @abstractmethod
    async def _initialize(self) -> None:
        """Build service components once storage is connected."""
        pass

    @abstractmethod
    async def _run(self) -> None:
        """Main loop; should return once shutdown_event is set."""
        pass

    async def _cleanup(self) -> None:
        """Release service-specific resources."""
        return None

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_shutdown, sig)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms
                self.logger.debug("signal_handler_unsupported", signal=sig.name)

    def _request_shutdown(self, sig: signal.Signals) -> None:
        self.logger.info("shutdown_requested", signal=sig.name)
        self.shutdown_event.set()

    async def _connect_storage(self) -> None:
        if self.config is None:
            raise RuntimeError("Configuration must be loaded before connecting storage")

        self.redis_client = RedisClient(
            self.config.redis,
            self.config.features.storage.redis,
        )
        await self.redis_client.connect()

        self.postgres_client = PostgresClient(self.config.postgres)
        await self.postgres_client.connect()
        await self.postgres_client.ensure_schema()

    async def _disconnect_storage(self) -> None:
        if self.postgres_client is not None:
            await self.postgres_client.disconnect()
        if self.redis_client is not None:
            await self.redis_client.disconnect()

    async def run(self) -> None:
        """
        Run the service until shutdown is requested.

        Raises:
            ConfigLoadError: If configuration is invalid.
            RedisConnectionException: If Redis is unreachable.
            PostgresConnectionException: If PostgreSQL is unreachable.
        """
        self.config = load_config(self.config_path)
        setup_logging(self.config)
        self.logger.info("service_starting", **self.config.summary())

        self._install_signal_handlers()

        try:
            await self._connect_storage()
            await self._initialize()
            self.logger.info("service_started")
            await self._run()
        finally:
            try:
                await self._cleanup()
            finally:
                await self._disconnect_storage()
                self.logger.info("service_stopped")
