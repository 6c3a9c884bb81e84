"""Control surface consumed by the UI layer.

:class:`BenchController` owns the last-value cache, both pollers and the CSV
recorder, and exposes the bench operations with plain values. Output and
current setpoint requests pass through a safety gate: while the CDS reports
less than :data:`constants.SAFE_VOLTAGE_THRESHOLD` volts the output is forced
off and the setpoint to 0 A, whatever the caller asked for.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from . import commands, constants
from .config import BenchConfig
from .core import CpState, DeviceEndpoint, GroupMode, ScpiResult, SinkPowerReading
from .health import HealthReporter
from .telemetry import CdsPoller, CsvRecorder, LastValueCache, SinkPowerPoller

LOGGER = logging.getLogger(__name__)


def _ms(value: float) -> float:
    return value / 1000.0


class BenchController:
    """Facade over the command layer, the pollers and the recorder."""

    def __init__(
        self,
        config: BenchConfig,
        *,
        cache: Optional[LastValueCache] = None,
        health: Optional[HealthReporter] = None,
        cds_poller: Optional[CdsPoller] = None,
        sink_poller: Optional[SinkPowerPoller] = None,
        recorder: Optional[CsvRecorder] = None,
        scpi_port: int = constants.SCPI_PORT,
        cds_port: int = constants.CDS_PORT,
    ) -> None:
        self._config = config
        self._scpi_port = scpi_port
        self._cds_port = cds_port
        self._response_timeout = _ms(config.polling.scpi_response_timeout_ms)
        self._read_timeout = _ms(config.polling.cds_read_timeout_ms)
        self.cache = cache or LastValueCache()
        self.health = health or HealthReporter()
        self.recorder = recorder or CsvRecorder(config.recording.directory)
        self.cds_poller = cds_poller or CdsPoller(
            self.cache,
            recorder=self.recorder,
            health=self.health,
            port=cds_port,
            read_timeout=self._read_timeout,
        )
        self.sink_poller = sink_poller or SinkPowerPoller(
            self.cache,
            health=self.health,
            port=scpi_port,
            response_timeout=self._response_timeout,
        )

    @property
    def config(self) -> BenchConfig:
        return self._config

    def _scpi(self, host: str) -> DeviceEndpoint:
        return DeviceEndpoint(host, self._scpi_port)

    def _cds(self, host: Optional[str]) -> DeviceEndpoint:
        return DeviceEndpoint(host or self._config.devices.cds_host, self._cds_port)

    def _output_permitted(self) -> bool:
        return self.cache.voltage >= constants.SAFE_VOLTAGE_THRESHOLD

    # ------------------------------------------------------------------
    # Sink / source commands
    # ------------------------------------------------------------------
    async def set_voltage_priority_mode(
        self,
        host: str,
        voltage_limit: Optional[float] = None,
        current_limit: Optional[float] = None,
    ) -> list[ScpiResult]:
        limits = self._config.limits
        return await commands.set_voltage_priority_mode(
            self._scpi(host),
            limits.voltage_limit if voltage_limit is None else voltage_limit,
            limits.current_limit if current_limit is None else current_limit,
            response_timeout=self._response_timeout,
        )

    async def set_current_priority_mode(
        self,
        host: str,
        current_limit: Optional[float] = None,
        voltage_limit: Optional[float] = None,
    ) -> list[ScpiResult]:
        limits = self._config.limits
        return await commands.set_current_priority_mode(
            self._scpi(host),
            limits.current_limit if current_limit is None else current_limit,
            limits.voltage_limit if voltage_limit is None else voltage_limit,
            response_timeout=self._response_timeout,
        )

    async def set_output(self, host: str, state: bool) -> ScpiResult:
        if state and not self._output_permitted():
            LOGGER.warning(
                "CDS voltage %s V below %s V; forcing output OFF",
                self.cache.voltage,
                constants.SAFE_VOLTAGE_THRESHOLD,
            )
            state = False
        return await commands.set_output(
            self._scpi(host), state, response_timeout=self._response_timeout
        )

    async def set_current_setpoint(self, host: str, amps: float) -> ScpiResult:
        if not self._output_permitted():
            if amps:
                LOGGER.warning(
                    "CDS voltage %s V below %s V; forcing current setpoint to 0 A",
                    self.cache.voltage,
                    constants.SAFE_VOLTAGE_THRESHOLD,
                )
            amps = 0
        return await commands.set_current_setpoint(
            self._scpi(host), amps, response_timeout=self._response_timeout
        )

    async def get_sink_power_value(self, host: str) -> ScpiResult:
        return await commands.read_sink_power(
            self._scpi(host), response_timeout=self._response_timeout
        )

    def define_voltage_current(self, power_kw: float, voltage: float) -> Dict[str, float]:
        max_kw = self._config.limits.max_kw
        if power_kw > max_kw:
            LOGGER.warning("Requested %s kW exceeds limit; using %s kW", power_kw, max_kw)
            power_kw = max_kw
        return {"current": commands.compute_current_for_power(power_kw, voltage)}

    async def set_group_mode(self, host: str, mode: GroupMode | str) -> ScpiResult:
        return await commands.set_group_mode(
            self._scpi(host), mode, response_timeout=self._response_timeout
        )

    # ------------------------------------------------------------------
    # One-shot CDS reads
    # ------------------------------------------------------------------
    async def read_cp_state(self, host: Optional[str] = None) -> CpState:
        return await commands.read_cp_state(
            self._cds(host), read_timeout=self._read_timeout
        )

    async def read_ev_max_current(self, host: Optional[str] = None) -> float:
        return await commands.read_ev_max_current(
            self._cds(host), read_timeout=self._read_timeout
        )

    async def read_ev_charging_current(self, host: Optional[str] = None) -> float:
        return await commands.read_ev_charging_current(
            self._cds(host), read_timeout=self._read_timeout
        )

    async def read_evse_max_current(self, host: Optional[str] = None) -> float:
        return await commands.read_evse_max_current(
            self._cds(host), read_timeout=self._read_timeout
        )

    async def read_ev_duty_cycle(self, host: Optional[str] = None) -> float:
        return await commands.read_ev_duty_cycle(
            self._cds(host), read_timeout=self._read_timeout
        )

    async def read_pp_max_current(self, host: Optional[str] = None) -> float:
        return await commands.read_pp_max_current(
            self._cds(host), read_timeout=self._read_timeout
        )

    async def read_voltage_l1(self, host: Optional[str] = None) -> float:
        return await commands.read_voltage_l1(
            self._cds(host), read_timeout=self._read_timeout
        )

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    async def start_polling_cds(
        self, host: Optional[str] = None, interval_ms: Optional[int] = None
    ) -> bool:
        interval = (
            interval_ms if interval_ms is not None else self._config.polling.cds_interval_ms
        )
        return await self.cds_poller.start(
            host or self._config.devices.cds_host, _ms(interval)
        )

    async def stop_polling_cds(self) -> None:
        await self.cds_poller.stop()

    def get_last_power_cds(self) -> float:
        return self.cache.power

    def get_last_voltage_cds(self) -> float:
        return self.cache.voltage

    def get_last_current_cds(self) -> float:
        return self.cache.current

    def start_sink_power_polling(
        self,
        host: Optional[str] = None,
        interval_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> bool:
        polling = self._config.polling
        return self.sink_poller.start(
            host or self._config.devices.current_host,
            _ms(interval_ms if interval_ms is not None else polling.sink_interval_ms),
            _ms(timeout_ms if timeout_ms is not None else polling.sink_timeout_ms),
        )

    async def stop_sink_power_polling(self) -> None:
        await self.sink_poller.stop()

    def get_last_sink_power_value(self) -> Optional[SinkPowerReading]:
        return self.cache.sink_power

    # ------------------------------------------------------------------
    # CSV recording
    # ------------------------------------------------------------------
    def start_csv_logging(self) -> Dict[str, object]:
        return self.recorder.start()

    def stop_csv_logging(self) -> Dict[str, object]:
        return self.recorder.stop()

    def get_csv_logging_status(self) -> Dict[str, object]:
        return self.recorder.status()

    async def aclose(self) -> None:
        await self.stop_polling_cds()
        await self.stop_sink_power_polling()
        if self.recorder.enabled:
            self.recorder.stop()
