"""SCPI adapter for the voltage source and current sink.

Each logical operation opens its own TCP session, probes the device with
``*IDN?`` and closes the session on every exit path. Sessions are never
pooled.

Response handling follows the ``AckOrSilenceOk`` policy: the bench devices
frequently acknowledge a command without sending anything back, so a
response wait that runs into the timeout resolves as a successful result
carrying :data:`NO_DATA_RECEIVED` instead of raising. Only socket level
failures are errors.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Optional

from .. import constants
from ..core import DeviceEndpoint, DeviceUnreachableError, DeviceWriteError, ScpiResult

LOGGER = logging.getLogger(__name__)

NO_DATA_RECEIVED = "no data received"
IDENTIFY_COMMAND = "*IDN?"

_READ_CHUNK = 4096


class ScpiClient:
    """Single TCP session to a SCPI device."""

    def __init__(
        self,
        endpoint: DeviceEndpoint,
        *,
        response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
        connect_timeout: float = 5.0,
    ) -> None:
        self.endpoint = endpoint
        self.response_timeout = response_timeout
        self.connect_timeout = connect_timeout
        self.identity: Optional[str] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> ScpiResult:
        """Open the socket and send the identification probe.

        Raises:
            DeviceUnreachableError: If the TCP connection cannot be established
                or breaks during the probe.
        """

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.endpoint.host, self.endpoint.port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            LOGGER.error("Connection error to %s: %s", self.endpoint, exc)
            raise DeviceUnreachableError(
                f"Device {self.endpoint} unreachable: {exc}"
            ) from exc

        try:
            identity = await self.send_command(IDENTIFY_COMMAND)
        except DeviceWriteError as exc:
            LOGGER.error("Failed to retrieve device ID from %s: %s", self.endpoint, exc)
            await self.close()
            raise DeviceUnreachableError(
                f"Failed to retrieve device ID from {self.endpoint}"
            ) from exc

        self.identity = identity.payload
        LOGGER.info("Device name: %s", identity.payload)
        return identity

    async def send_command(self, command: str) -> ScpiResult:
        """Write ``command`` and wait for the next chunk of response data.

        Raises:
            DeviceWriteError: If the socket fails while writing or reading.
        """

        reader, writer = self._reader, self._writer
        if reader is None or writer is None:
            raise DeviceWriteError(f"Session to {self.endpoint} is not open")

        try:
            writer.write(f"{command}\n".encode("ascii"))
            await writer.drain()
        except OSError as exc:
            raise DeviceWriteError(
                f"Writing {command!r} to {self.endpoint} failed: {exc}"
            ) from exc

        try:
            data = await asyncio.wait_for(
                reader.read(_READ_CHUNK), timeout=self.response_timeout
            )
        except asyncio.TimeoutError:
            LOGGER.debug("No response to %r from %s", command, self.endpoint)
            return ScpiResult(succeeded=True, payload=NO_DATA_RECEIVED)
        except OSError as exc:
            raise DeviceWriteError(
                f"Reading response to {command!r} from {self.endpoint} failed: {exc}"
            ) from exc

        if not data:
            # peer closed the stream without answering
            LOGGER.debug("Stream closed by %s after %r", self.endpoint, command)
            return ScpiResult(succeeded=True, payload=NO_DATA_RECEIVED)

        result = ScpiResult(
            succeeded=True, payload=data.decode("ascii", errors="replace").strip()
        )
        LOGGER.debug("send_command %r -> %r", command, result.payload)
        return result

    async def close(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        LOGGER.debug("Closed SCPI connection to %s", self.endpoint)


@contextlib.asynccontextmanager
async def scpi_session(
    endpoint: DeviceEndpoint,
    *,
    response_timeout: float = constants.SCPI_RESPONSE_TIMEOUT_SECONDS,
) -> AsyncIterator[ScpiClient]:
    """Yield a connected :class:`ScpiClient` and close it on every exit path."""

    client = ScpiClient(endpoint, response_timeout=response_timeout)
    try:
        await client.connect()
        yield client
    finally:
        await client.close()
        LOGGER.info("Closed SCPI connection.")
