"""Device operations for the bench power electronics and the CDS unit.

Every operation opens exactly one session, runs its commands in order on that
session and closes it on all exit paths. Multi-step mode changes are ordered
because the devices execute commands serially and a reordered sequence leaves
them in an inconsistent state. Errors propagate to the caller unchanged; no
operation retries.
"""

from __future__ import annotations

import logging
from typing import Sequence

from . import constants
from .adapters import cds_stream, decode_cp_state, decode_float, scpi_session
from .adapters import cds as cds_registers
from .core import CpState, DeviceEndpoint, GroupMode, ScpiResult

LOGGER = logging.getLogger(__name__)

# Empirical loss curve of the 20 kW sink modules; calibration constants.
_LOSS_QUADRATIC = 0.0035
_LOSS_LINEAR = 0.9858
_LOSS_OFFSET = 0.5878


def _format_number(value: float) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


async def run_sequence(
    endpoint: DeviceEndpoint,
    commands: Sequence[str],
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> list[ScpiResult]:
    """Send ``commands`` in order over one SCPI session, awaiting each one."""

    results: list[ScpiResult] = []
    async with scpi_session(endpoint, response_timeout=response_timeout) as client:
        for command in commands:
            results.append(await client.send_command(command))
    return results


async def set_voltage_priority_mode(
    endpoint: DeviceEndpoint,
    voltage_limit: float,
    current_limit: float,
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> list[ScpiResult]:
    max_current = abs(current_limit)
    min_current = -abs(current_limit)
    LOGGER.info("Sink %s is set to Voltage Priority Mode", endpoint.host)
    results = await run_sequence(
        endpoint,
        (
            "SOUR:FUNC VOLT",
            f"SOUR:CURR:LIM:POS:IMM:AMPL {_format_number(max_current)}",
            f"SOUR:CURR:LIM:NEG:IMM:AMPL {_format_number(min_current)}",
            f"SOUR:VOLT:LEV:IMM:AMPL {_format_number(voltage_limit)}",
        ),
        response_timeout=response_timeout,
    )
    LOGGER.info(
        "Output current limit set to %s A, voltage limit set to %s V",
        _format_number(current_limit),
        _format_number(voltage_limit),
    )
    return results


async def set_current_priority_mode(
    endpoint: DeviceEndpoint,
    current_limit: float,
    voltage_limit: float,
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> list[ScpiResult]:
    current = abs(current_limit)
    LOGGER.info("Sink %s is set to Current Priority Mode", endpoint.host)
    results = await run_sequence(
        endpoint,
        (
            "SOUR:FUNC CURR",
            f"SOUR:CURR {_format_number(current)}",
            f"SOUR:VOLT:LIM:POS:IMM:AMPL {_format_number(voltage_limit)}",
        ),
        response_timeout=response_timeout,
    )
    LOGGER.info("Output current set to %s A", _format_number(current_limit))
    return results


async def set_output(
    endpoint: DeviceEndpoint,
    state: bool,
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> ScpiResult:
    command = "OUTP ON" if state else "OUTP OFF"
    LOGGER.info("Set output %s on %s", "ON" if state else "OFF", endpoint.host)
    (result,) = await run_sequence(
        endpoint, (command,), response_timeout=response_timeout
    )
    return result


async def set_current_setpoint(
    endpoint: DeviceEndpoint,
    amps: float,
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> ScpiResult:
    (result,) = await run_sequence(
        endpoint,
        (f"SOUR:CURR {_format_number(amps)}",),
        response_timeout=response_timeout,
    )
    LOGGER.info("Sink %s current setpoint set to %s A", endpoint.host, _format_number(amps))
    return result


async def read_sink_power(
    endpoint: DeviceEndpoint,
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> ScpiResult:
    (result,) = await run_sequence(
        endpoint, ("MEAS:POW?",), response_timeout=response_timeout
    )
    LOGGER.debug("Output power %s W", result.payload)
    return ScpiResult(succeeded=True, payload=result.payload)


async def set_group_mode(
    endpoint: DeviceEndpoint,
    mode: GroupMode | str,
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> ScpiResult:
    group = _coerce_group_mode(mode)
    (result,) = await run_sequence(
        endpoint,
        (f"INST:GRO:FUNC {group.value}",),
        response_timeout=response_timeout,
    )
    LOGGER.info("Sink %s configured to group mode %s", endpoint.host, group.value)
    return result


def _coerce_group_mode(mode: GroupMode | str) -> GroupMode:
    if isinstance(mode, GroupMode):
        return mode
    normalized = str(mode).strip().upper()
    for candidate in GroupMode:
        if normalized in (candidate.name, candidate.value):
            return candidate
    raise ValueError(f"Unknown group mode: {mode!r} (use MASTER, SLAVE or NONE)")


def compute_current_for_power(power_kw: float, voltage: float) -> float:
    """Convert a requested power in kW into a sink current setpoint in A.

    The request is corrected by the module loss curve before dividing by the
    line voltage. Results below zero are clamped, so a 0 kW request yields
    0 A rather than the negative offset of the curve.
    """

    if voltage <= 0:
        raise ValueError(f"Voltage must be positive, got {voltage!r}")
    power_with_loss = (
        _LOSS_QUADRATIC * power_kw**2 + _LOSS_LINEAR * power_kw + _LOSS_OFFSET
    )
    adjusted_power_kw = 2 * power_kw - power_with_loss
    current = round(adjusted_power_kw * 1000 / voltage, 2)
    return max(current, 0.0)


# ----------------------------------------------------------------------
# One-shot CDS reads
# ----------------------------------------------------------------------
async def read_cds_register(
    endpoint: DeviceEndpoint,
    register: tuple[int, int],
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> bytes:
    async with cds_stream(endpoint, read_timeout=read_timeout) as client:
        return await client.read_register(*register)


async def _read_cds_float(
    endpoint: DeviceEndpoint, register: tuple[int, int], read_timeout: float
) -> float:
    value = decode_float(
        await read_cds_register(endpoint, register, read_timeout=read_timeout)
    )
    LOGGER.debug(
        "CDS register 0x%02X/0x%02X = %s", register[0], register[1], value
    )
    return value


async def read_cp_state(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> CpState:
    frame = await read_cds_register(
        endpoint, cds_registers.REG_CP_STATE, read_timeout=read_timeout
    )
    state = decode_cp_state(frame)
    LOGGER.info("CDS %s CP state %s", endpoint.host, state.value)
    return state


async def read_ev_max_current(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> float:
    return await _read_cds_float(endpoint, cds_registers.REG_EV_MAX_CURRENT, read_timeout)


async def read_ev_charging_current(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> float:
    return await _read_cds_float(
        endpoint, cds_registers.REG_EV_CHARGING_CURRENT, read_timeout
    )


async def read_evse_max_current(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> float:
    return await _read_cds_float(
        endpoint, cds_registers.REG_EVSE_MAX_CURRENT, read_timeout
    )


async def read_ev_duty_cycle(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> float:
    return await _read_cds_float(endpoint, cds_registers.REG_EV_DUTY_CYCLE, read_timeout)


async def read_pp_max_current(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> float:
    return await _read_cds_float(endpoint, cds_registers.REG_PP_MAX_CURRENT, read_timeout)


async def read_voltage_l1(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> float:
    return await _read_cds_float(endpoint, cds_registers.REG_VOLTAGE_L1, read_timeout)
