"""Periodic telemetry polling for the CDS unit and the current sink.

Two independent loops feed the :class:`LastValueCache`:

- :class:`CdsPoller` owns one persistent CDS session and chains its cycles:
  the next cycle is scheduled only after the previous one finished, so reads
  never overlap on the shared stream.
- :class:`SinkPowerPoller` ticks at a fixed rate and opens a fresh SCPI
  session for every ``MEAS:POW?`` read.

Failures inside a cycle are logged and the loop keeps running; callers see
the last good values.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Optional

from .. import constants
from ..adapters import CdsClient, decode_float
from ..adapters import cds as cds_registers
from ..commands import read_sink_power
from ..core import (
    BenchError,
    DeviceEndpoint,
    RegisterReader,
    ScpiResult,
    SinkPowerReading,
)
from ..health import HealthReporter
from .cache import LastValueCache
from .recorder import CsvRecorder

LOGGER = logging.getLogger(__name__)

CDS_COMPONENT = "cds-poller"
SINK_COMPONENT = "sink-poller"

RegisterReaderFactory = Callable[[DeviceEndpoint], RegisterReader]
SinkPowerReader = Callable[[DeviceEndpoint], Awaitable[ScpiResult]]


class PollerState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPING = "stopping"


@dataclass
class PollingSession:
    """One activation of a poller; owns its connection exclusively."""

    endpoint: DeviceEndpoint
    interval: float
    client: Optional[RegisterReader] = None
    task: Optional[asyncio.Task[None]] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    cycles: int = 0
    failures: int = 0

    @property
    def active(self) -> bool:
        return not self.stop_event.is_set()


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class CdsPoller:
    """Chained polling of voltage, power and current from the CDS unit."""

    def __init__(
        self,
        cache: LastValueCache,
        *,
        recorder: Optional[CsvRecorder] = None,
        health: Optional[HealthReporter] = None,
        port: int = constants.CDS_PORT,
        read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
        client_factory: Optional[RegisterReaderFactory] = None,
        stop_grace_seconds: Optional[float] = None,
    ) -> None:
        self._cache = cache
        self._recorder = recorder
        self._health = health
        self._port = port
        self._client_factory: RegisterReaderFactory = client_factory or partial(
            CdsClient, read_timeout=read_timeout
        )
        # an in-flight cycle is three bounded reads; allow it to finish
        self._stop_grace = (
            stop_grace_seconds
            if stop_grace_seconds is not None
            else 3 * read_timeout + 1.0
        )
        self._session: Optional[PollingSession] = None
        self._state = PollerState.IDLE
        self._lock = asyncio.Lock()

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def session(self) -> Optional[PollingSession]:
        return self._session

    async def start(self, host: str, interval_seconds: float) -> bool:
        """Open the CDS session and begin polling.

        Returns ``False`` without side effects when polling is already active.

        Raises:
            DeviceUnreachableError: If the CDS session cannot be opened.
        """

        async with self._lock:
            if self._session is not None:
                LOGGER.debug("CDS polling already active; ignoring start")
                return False

            endpoint = DeviceEndpoint(host, self._port)
            client = self._client_factory(endpoint)
            try:
                await client.open()
                await client.begin_stream()
            except Exception:
                await client.close()
                raise

            session = PollingSession(
                endpoint=endpoint,
                interval=max(interval_seconds, 0.0),
                client=client,
            )
            self._session = session
            self._state = PollerState.ACTIVE
            session.task = asyncio.create_task(self._poll_loop(session))
            LOGGER.info(
                "CDS polling started on %s every %.3fs", endpoint, session.interval
            )
            return True

    async def stop(self) -> None:
        """Stop polling and tear down the CDS session. Safe when idle."""

        async with self._lock:
            session = self._session
            if session is None:
                return

            self._state = PollerState.STOPPING
            session.stop_event.set()

            task = session.task
            if task is not None:
                done, _ = await asyncio.wait({task}, timeout=self._stop_grace)
                if not done:
                    LOGGER.warning("CDS poll cycle did not finish in time; cancelling")
                    task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                session.task = None

            await self._teardown(session)
            self._session = None
            self._state = PollerState.IDLE
            if self._health is not None:
                await self._health.remove(CDS_COMPONENT)
            LOGGER.info("CDS polling stopped")

    async def _teardown(self, session: PollingSession) -> None:
        client = session.client
        session.client = None
        if client is None:
            return
        try:
            await client.end_stream()
        except Exception as exc:
            LOGGER.error("Error stopping global status: %s", exc)
        try:
            await client.close()
        except Exception as exc:
            LOGGER.error("Error disconnecting CDS adapter: %s", exc)

    async def _poll_loop(self, session: PollingSession) -> None:
        while session.active:
            await self._run_cycle(session)

            try:
                await asyncio.wait_for(
                    session.stop_event.wait(), timeout=session.interval
                )
                break
            except asyncio.TimeoutError:
                continue

    async def _run_cycle(self, session: PollingSession) -> None:
        client = session.client
        if client is None:
            return

        try:
            voltage = await self._read_value(client, cds_registers.REG_VOLTAGE_L1)
            if not session.active:
                return
            self._cache.voltage = voltage
            LOGGER.debug("CDS voltage L1: %s V", voltage)

            power = await self._read_value(client, cds_registers.REG_REAL_POWER)
            if not session.active:
                return
            if power > 0:
                self._cache.power = power
            LOGGER.debug("CDS power: %s W", power)

            current = await self._read_value(client, cds_registers.REG_CURRENT_L1)
            if not session.active:
                return
            self._cache.current = current
            LOGGER.debug("CDS current L1: %s A", current)
        except asyncio.CancelledError:
            raise
        except BenchError as exc:
            session.failures += 1
            LOGGER.warning("Error in CDS polling: %s", exc)
            await self._report(False, str(exc))
            return
        except Exception:
            session.failures += 1
            LOGGER.exception("Unexpected error in CDS polling")
            await self._report(False, "unexpected error")
            return

        session.cycles += 1
        if self._recorder is not None and self._recorder.enabled:
            self._recorder.append_row(self._cache)
        await self._report(True, f"cycles={session.cycles}")

    @staticmethod
    async def _read_value(client: RegisterReader, register: tuple[int, int]) -> int:
        frame = await client.read_register(*register)
        return _round_half_up(decode_float(frame))

    async def _report(self, healthy: bool, detail: str) -> None:
        if self._health is not None:
            await self._health.update(CDS_COMPONENT, healthy, detail)


class SinkPowerPoller:
    """Fixed-rate polling of the current sink's measured power."""

    def __init__(
        self,
        cache: LastValueCache,
        *,
        health: Optional[HealthReporter] = None,
        port: int = constants.SCPI_PORT,
        response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
        reader: Optional[SinkPowerReader] = None,
    ) -> None:
        self._cache = cache
        self._health = health
        self._port = port
        self._reader: SinkPowerReader = reader or partial(
            read_sink_power, response_timeout=response_timeout
        )
        self._tick_task: Optional[asyncio.Task[None]] = None
        self._inflight: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def start(
        self, host: str, interval_seconds: float, timeout_seconds: float
    ) -> bool:
        """Start ticking; returns ``False`` when a loop is already running."""

        if self.running:
            return False

        endpoint = DeviceEndpoint(host, self._port)
        self._tick_task = asyncio.create_task(
            self._tick_loop(endpoint, max(interval_seconds, 0.01), timeout_seconds)
        )
        LOGGER.info(
            "Sink power polling started on %s every %.3fs", endpoint, interval_seconds
        )
        return True

    async def stop(self) -> None:
        tasks = [task for task in (self._tick_task, self._inflight) if task is not None]
        self._tick_task = None
        self._inflight = None
        if not tasks:
            return

        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._health is not None:
            await self._health.remove(SINK_COMPONENT)
        LOGGER.info("Sink power polling stopped")

    async def _tick_loop(
        self, endpoint: DeviceEndpoint, interval: float, timeout: float
    ) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while True:
            await asyncio.sleep(max(next_tick - loop.time(), 0.0))
            next_tick += interval

            if self._inflight is not None and not self._inflight.done():
                LOGGER.debug("Previous sink power read still running; skipping tick")
                continue
            self._inflight = asyncio.create_task(self._read_once(endpoint, timeout))

    async def _read_once(self, endpoint: DeviceEndpoint, timeout: float) -> None:
        try:
            async with asyncio.timeout(timeout):
                result = await self._reader(endpoint)
        except asyncio.CancelledError:
            raise
        except (BenchError, TimeoutError) as exc:
            LOGGER.warning("Sink power read from %s failed: %s", endpoint, exc)
            await self._report(False, f"stale: {exc}")
            return
        except Exception:
            LOGGER.exception("Unexpected error reading sink power")
            await self._report(False, "stale: unexpected error")
            return

        self._cache.sink_power = SinkPowerReading(
            ScpiResult(succeeded=True, payload=result.payload)
        )
        await self._report(True, f"{result.payload} W")

    async def _report(self, healthy: bool, detail: str) -> None:
        if self._health is not None:
            await self._health.update(SINK_COMPONENT, healthy, detail)
