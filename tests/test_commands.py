import pytest

from ac_dynamic_load import commands
from ac_dynamic_load.adapters import NO_DATA_RECEIVED
from ac_dynamic_load.adapters import cds as cds_registers
from ac_dynamic_load.core import CpState, DeviceEndpoint, DeviceUnreachableError, GroupMode

from helpers import wait_until

FAST = 0.05


def _endpoint(device) -> DeviceEndpoint:
    return DeviceEndpoint("127.0.0.1", device.port)


@pytest.mark.asyncio
async def test_voltage_priority_mode_sends_ordered_sequence_on_one_connection(scpi_device):
    results = await commands.set_voltage_priority_mode(
        _endpoint(scpi_device), 400, -32, response_timeout=FAST
    )

    assert len(results) == 4
    assert scpi_device.connections == 1
    assert scpi_device.sessions[0] == [
        "*IDN?",
        "SOUR:FUNC VOLT",
        "SOUR:CURR:LIM:POS:IMM:AMPL 32",
        "SOUR:CURR:LIM:NEG:IMM:AMPL -32",
        "SOUR:VOLT:LEV:IMM:AMPL 400",
    ]
    await wait_until(lambda: scpi_device.open_connections == 0)


@pytest.mark.asyncio
async def test_current_priority_mode_sequence(scpi_device):
    await commands.set_current_priority_mode(
        _endpoint(scpi_device), 12.5, 692, response_timeout=FAST
    )

    assert scpi_device.sessions[0] == [
        "*IDN?",
        "SOUR:FUNC CURR",
        "SOUR:CURR 12.5",
        "SOUR:VOLT:LIM:POS:IMM:AMPL 692",
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("state, expected", [(True, "OUTP ON"), (False, "OUTP OFF")])
async def test_set_output(scpi_device, state, expected):
    await commands.set_output(_endpoint(scpi_device), state, response_timeout=FAST)

    assert scpi_device.commands[-1] == expected


@pytest.mark.asyncio
async def test_set_current_setpoint_formats_numbers(scpi_device):
    endpoint = _endpoint(scpi_device)

    await commands.set_current_setpoint(endpoint, 16.0, response_timeout=FAST)
    await commands.set_current_setpoint(endpoint, 25.36, response_timeout=FAST)

    assert [session[-1] for session in scpi_device.sessions] == [
        "SOUR:CURR 16",
        "SOUR:CURR 25.36",
    ]
    assert scpi_device.connections == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mode, expected",
    [
        (GroupMode.MASTER, "INST:GRO:FUNC MAST"),
        ("SLAVE", "INST:GRO:FUNC SLAV"),
        ("none", "INST:GRO:FUNC NONE"),
        ("MAST", "INST:GRO:FUNC MAST"),
    ],
)
async def test_set_group_mode(scpi_device, mode, expected):
    await commands.set_group_mode(_endpoint(scpi_device), mode, response_timeout=FAST)

    assert scpi_device.commands[-1] == expected


@pytest.mark.asyncio
async def test_set_group_mode_rejects_unknown_mode(scpi_device):
    with pytest.raises(ValueError):
        await commands.set_group_mode(_endpoint(scpi_device), "LEADER")

    assert scpi_device.connections == 0


@pytest.mark.asyncio
async def test_read_sink_power_returns_measurement(scpi_device):
    scpi_device.responses["MEAS:POW?"] = "10987.6"

    result = await commands.read_sink_power(_endpoint(scpi_device), response_timeout=0.5)

    assert result.succeeded is True
    assert result.payload == "10987.6"


@pytest.mark.asyncio
async def test_read_sink_power_silence_is_not_an_error(scpi_device):
    result = await commands.read_sink_power(_endpoint(scpi_device), response_timeout=FAST)

    assert result.succeeded is True
    assert result.payload == NO_DATA_RECEIVED


@pytest.mark.asyncio
async def test_command_propagates_unreachable_device(refused_port):
    with pytest.raises(DeviceUnreachableError):
        await commands.set_output(DeviceEndpoint("127.0.0.1", refused_port), True)


def test_compute_current_for_zero_power_is_zero():
    assert commands.compute_current_for_power(0, 230) == 0


def test_compute_current_for_power_applies_loss_curve():
    # 2*11 - (0.0035*121 + 0.9858*11 + 0.5878) = 10.1449 kW -> 25.36 A at 400 V
    assert commands.compute_current_for_power(11, 400) == 25.36


def test_compute_current_for_power_is_monotonic():
    currents = [commands.compute_current_for_power(kw / 2, 400) for kw in range(0, 200)]

    assert currents == sorted(currents)
    assert currents[-1] > currents[0]


def test_compute_current_for_power_requires_positive_voltage():
    with pytest.raises(ValueError):
        commands.compute_current_for_power(11, 0)


@pytest.mark.asyncio
async def test_read_cp_state(cds_device):
    cds_device.registers[cds_registers.REG_CP_STATE] = bytes((0x00, 0x04, 0, 0, 0))

    state = await commands.read_cp_state(
        DeviceEndpoint("127.0.0.1", cds_device.port), read_timeout=0.5
    )

    assert state == CpState.C1
    await wait_until(lambda: cds_device.open_connections == 0)
    assert cds_device.stream_events == ["begin", "end"]


@pytest.mark.asyncio
async def test_one_shot_float_reads(cds_device):
    cds_device.registers.update(
        {
            cds_registers.REG_EV_MAX_CURRENT: 32.0,
            cds_registers.REG_EV_CHARGING_CURRENT: 15.5,
            cds_registers.REG_EVSE_MAX_CURRENT: 16.0,
            cds_registers.REG_EV_DUTY_CYCLE: 26.5,
            cds_registers.REG_PP_MAX_CURRENT: 20.0,
            cds_registers.REG_VOLTAGE_L1: 229.5,
        }
    )
    endpoint = DeviceEndpoint("127.0.0.1", cds_device.port)

    assert await commands.read_ev_max_current(endpoint, read_timeout=0.5) == 32.0
    assert await commands.read_ev_charging_current(endpoint, read_timeout=0.5) == 15.5
    assert await commands.read_evse_max_current(endpoint, read_timeout=0.5) == 16.0
    assert await commands.read_ev_duty_cycle(endpoint, read_timeout=0.5) == 26.5
    assert await commands.read_pp_max_current(endpoint, read_timeout=0.5) == 20.0
    assert await commands.read_voltage_l1(endpoint, read_timeout=0.5) == 229.5
    assert cds_device.connections == 6
