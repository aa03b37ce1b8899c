"""ServiceRunner lifecycle tests, with storage and config patched out."""

from unittest.mock import AsyncMock, patch

import pytest

from geosafe.config.models import AppConfig
from geosafe.services import ServiceRunner


class RecordingService(ServiceRunner):
    def __init__(self, fail_in_run=None):
        super().__init__("config")
        self.fail_in_run = fail_in_run
        self.calls = []

    @property
    def service_name(self) -> str:
        return "recording"

    async def _initialize(self) -> None:
        self.calls.append("initialize")

    async def _run(self) -> None:
        self.calls.append("run")
        if self.fail_in_run is not None:
            raise self.fail_in_run

    async def _cleanup(self) -> None:
        self.calls.append("cleanup")


class TestServiceRunner:
    """Startup order and teardown"""

    @pytest.mark.asyncio
    async def test_connect_without_config_is_an_error(self):
        service = RecordingService()
        with pytest.raises(RuntimeError, match="Configuration"):
            await service._connect_storage()

    @pytest.mark.asyncio
    async def test_cleanup_and_disconnect_run_after_failure(self):
        service = RecordingService(fail_in_run=ValueError("consumer lost"))
        disconnect = AsyncMock()

        with patch("geosafe.services.runner.load_config", return_value=AppConfig()), \
                patch("geosafe.services.runner.setup_logging"), \
                patch.object(service, "_connect_storage", new=AsyncMock()), \
                patch.object(service, "_disconnect_storage", new=disconnect), \
                patch.object(service, "_install_signal_handlers"):
            with pytest.raises(ValueError, match="consumer lost"):
                await service.run()

        assert service.calls == ["initialize", "run", "cleanup"]
        disconnect.assert_awaited_once()
