"""Main application entry-point for ac-dynamic-load."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import BenchConfig, load_config
from .controller import BenchController
from .core import BenchError
from .health import HealthServer
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


class BenchApp:
    """Runs both pollers against the configured bench until shutdown.

    A device that is unreachable at startup leaves its poller idle and the
    service keeps running in degraded mode; the health endpoint reports it.
    """

    def __init__(
        self,
        config: Optional[BenchConfig] = None,
        *,
        controller: Optional[BenchController] = None,
    ) -> None:
        self._config = config or load_config()
        self.controller = controller or BenchController(self._config)
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    async def run(self) -> None:
        self._shutdown_event = asyncio.Event()
        LOGGER.info("ac-dynamic-load starting with config: %s", self._config.path)
        started = await self._start_services()
        if not started:
            LOGGER.warning("Service startup incomplete; running in degraded mode")

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("ac-dynamic-load received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[BenchConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level, log_path=instance._config.logging.path
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("ac-dynamic-load received shutdown signal")

    async def _start_services(self) -> bool:
        controller = self.controller
        healthy = True

        if self._config.health.enabled:
            self._health_server = HealthServer(
                controller.health,
                self._config.health.host,
                self._config.health.port,
                values=controller.cache.snapshot,
            )
            await self._health_server.start()

        try:
            await controller.start_polling_cds()
        except BenchError as exc:
            healthy = False
            LOGGER.error("CDS polling could not start: %s", exc)
            await controller.health.update("cds-poller", False, str(exc))

        controller.start_sink_power_polling()
        return healthy

    async def _stop_services(self) -> None:
        await self.controller.aclose()
        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None
        LOGGER.info("ac-dynamic-load stopped")
