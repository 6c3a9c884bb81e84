"""Tests for BenchApp startup and shutdown."""

import asyncio
from configparser import ConfigParser
from pathlib import Path

import pytest

from ac_dynamic_load.app import BenchApp
from ac_dynamic_load.config import (
    BenchConfig,
    DevicesConfig,
    HealthConfig,
    LimitsConfig,
    LoggingConfig,
    PollingConfig,
    RecordingConfig,
)
from ac_dynamic_load.controller import BenchController
from ac_dynamic_load.telemetry import PollerState

from helpers import wait_until


def _build_config(tmp_path: Path) -> BenchConfig:
    return BenchConfig(
        devices=DevicesConfig(
            voltage_host="127.0.0.1", current_host="127.0.0.1", cds_host="127.0.0.1"
        ),
        limits=LimitsConfig(),
        polling=PollingConfig(
            cds_interval_ms=20,
            sink_interval_ms=20,
            sink_timeout_ms=200,
            scpi_response_timeout_ms=50,
            cds_read_timeout_ms=200,
        ),
        recording=RecordingConfig(directory=tmp_path),
        logging=LoggingConfig(path=None),
        health=HealthConfig(),
        raw=ConfigParser(),
        path=tmp_path / "ac-dynamic-load.cfg",
    )


@pytest.mark.asyncio
async def test_app_runs_degraded_when_devices_are_unreachable(tmp_path, refused_port):
    config = _build_config(tmp_path)
    controller = BenchController(config, scpi_port=refused_port, cds_port=refused_port)
    app = BenchApp(config, controller=controller)

    task = asyncio.create_task(app.run())
    try:
        await wait_until(lambda: controller.sink_poller.running)
        snapshot = await controller.health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}
        assert components["cds-poller"]["healthy"] is False
        assert controller.cds_poller.state == PollerState.IDLE
    finally:
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)

    assert controller.sink_poller.running is False


@pytest.mark.asyncio
async def test_app_polls_and_stops_cleanly(tmp_path, cds_device, scpi_device):
    from ac_dynamic_load.adapters import cds as cds_registers

    cds_device.registers.update(
        {
            cds_registers.REG_VOLTAGE_L1: 231.0,
            cds_registers.REG_REAL_POWER: 2200.0,
            cds_registers.REG_CURRENT_L1: 9.5,
        }
    )
    config = _build_config(tmp_path)
    controller = BenchController(
        config, scpi_port=scpi_device.port, cds_port=cds_device.port
    )
    app = BenchApp(config, controller=controller)

    task = asyncio.create_task(app.run())
    try:
        await wait_until(lambda: controller.cache.power == 2200)
    finally:
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)

    assert controller.cache.current == 10
    assert controller.cds_poller.state == PollerState.IDLE
    await wait_until(lambda: cds_device.open_connections == 0)
