import pytest

from ac_dynamic_load.adapters import NO_DATA_RECEIVED, ScpiClient, scpi_session
from ac_dynamic_load.core import DeviceEndpoint, DeviceUnreachableError

from helpers import wait_until


@pytest.mark.asyncio
async def test_connect_probes_identity(scpi_device):
    client = ScpiClient(DeviceEndpoint("127.0.0.1", scpi_device.port))

    result = await client.connect()
    try:
        assert result.succeeded is True
        assert result.payload == "FAKE,SINK,0,1.0"
        assert client.identity == "FAKE,SINK,0,1.0"
        assert scpi_device.commands == ["*IDN?"]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_send_command_returns_trimmed_payload(scpi_device):
    scpi_device.responses["MEAS:POW?"] = "  4321.5 "

    async with scpi_session(
        DeviceEndpoint("127.0.0.1", scpi_device.port), response_timeout=0.5
    ) as client:
        result = await client.send_command("MEAS:POW?")

    assert result.succeeded is True
    assert result.payload == "4321.5"
    assert result.watts == pytest.approx(4321.5)


@pytest.mark.asyncio
async def test_silence_is_success_with_sentinel(scpi_device):
    async with scpi_session(
        DeviceEndpoint("127.0.0.1", scpi_device.port), response_timeout=0.1
    ) as client:
        result = await client.send_command("OUTP ON")

    assert result.succeeded is True
    assert result.payload == NO_DATA_RECEIVED
    assert result.watts is None


@pytest.mark.asyncio
async def test_silent_identity_probe_still_connects(scpi_device):
    del scpi_device.responses["*IDN?"]
    client = ScpiClient(
        DeviceEndpoint("127.0.0.1", scpi_device.port), response_timeout=0.1
    )

    result = await client.connect()
    try:
        assert result.payload == NO_DATA_RECEIVED
        assert client.is_connected
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_refused_connection_raises_connection_error(refused_port):
    client = ScpiClient(DeviceEndpoint("127.0.0.1", refused_port))

    with pytest.raises(DeviceUnreachableError) as excinfo:
        await client.connect()

    assert isinstance(excinfo.value, ConnectionError)
    assert client.is_connected is False


@pytest.mark.asyncio
async def test_session_closes_on_error(scpi_device):
    with pytest.raises(RuntimeError):
        async with scpi_session(
            DeviceEndpoint("127.0.0.1", scpi_device.port), response_timeout=0.1
        ):
            raise RuntimeError("boom")

    await wait_until(lambda: scpi_device.open_connections == 0)
    assert scpi_device.connections == 1
