"""Binary register client for the CDS charging data system.

A CDS session is a persistent TCP connection. Register reads are only
answered while a status stream is open, so callers bracket a series of reads
with :meth:`CdsClient.begin_stream` and :meth:`CdsClient.end_stream`.

Wire format::

    request   [0x01, group, index]
    response  [tag, b0, b1, b2, b3]      b0..b3: float32, little-endian
    stream    [0x02, 0x01] (begin)  /  [0x02, 0x00] (end), no response
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import struct
from typing import AsyncIterator, Optional

from .. import constants
from ..core import (
    CdsProtocolError,
    CdsTimeoutError,
    CpState,
    DeviceEndpoint,
    DeviceUnreachableError,
    DeviceWriteError,
)

LOGGER = logging.getLogger(__name__)

FRAME_LENGTH = 5

_CMD_READ = 0x01
_CMD_STREAM = 0x02
_STREAM_BEGIN = bytes((_CMD_STREAM, 0x01))
_STREAM_END = bytes((_CMD_STREAM, 0x00))

# (group, index) register addresses
REG_EV_MAX_CURRENT = (0x01, 0x05)
REG_EV_CHARGING_CURRENT = (0x00, 0xE6)
REG_EVSE_MAX_CURRENT = (0x02, 0xE5)
REG_EV_DUTY_CYCLE = (0x07, 0xD4)
REG_PP_MAX_CURRENT = (0x09, 0x03)
REG_REAL_POWER = (0x08, 0x43)
REG_VOLTAGE_L1 = (0x08, 0x66)
REG_CURRENT_L1 = (0x08, 0x6C)
REG_CP_STATE = (0x00, 0x14)

_CP_STATES = {
    0x01: CpState.A1,
    0x02: CpState.B1,
    0x03: CpState.B2,
    0x04: CpState.C1,
    0x05: CpState.C2,
    0x06: CpState.F,
}


def decode_float(frame: bytes) -> float:
    """Decode the float32 carried in the payload bytes of a register frame."""

    if len(frame) != FRAME_LENGTH:
        raise CdsProtocolError(
            f"Expected {FRAME_LENGTH}-byte frame, got {len(frame)} bytes"
        )
    (value,) = struct.unpack("<f", bytes(frame[1:FRAME_LENGTH]))
    return value


def decode_cp_state(frame: bytes) -> CpState:
    """Translate the control pilot byte of a CP state frame."""

    if len(frame) != FRAME_LENGTH:
        raise CdsProtocolError(
            f"Expected {FRAME_LENGTH}-byte frame, got {len(frame)} bytes"
        )
    return _CP_STATES.get(frame[1], CpState.UNKNOWN)


class CdsClient:
    """Persistent register session to one CDS unit.

    Reads are serialised with a lock: the device has no request identifiers,
    so frames of concurrent reads would interleave on the stream.
    """

    def __init__(
        self,
        endpoint: DeviceEndpoint,
        *,
        read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
        connect_timeout: float = 5.0,
    ) -> None:
        self.endpoint = endpoint
        self.read_timeout = read_timeout
        self.connect_timeout = connect_timeout
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()
        # stream intent survives reconnects; only end_stream clears it
        self._stream_requested = False
        self._resync_required = False

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def streaming(self) -> bool:
        return self._stream_requested

    async def open(self) -> None:
        if self.is_open:
            return
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.endpoint.host, self.endpoint.port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            LOGGER.error("CDS connection error to %s: %s", self.endpoint, exc)
            raise DeviceUnreachableError(
                f"CDS {self.endpoint} unreachable: {exc}"
            ) from exc
        self._resync_required = False
        LOGGER.debug("Connected to CDS at %s", self.endpoint)

    async def begin_stream(self) -> None:
        await self.open()
        self._stream_requested = True
        await self._write(_STREAM_BEGIN)
        LOGGER.info("Starting global status for CDS %s", self.endpoint)

    async def end_stream(self) -> None:
        if not self._stream_requested:
            return
        self._stream_requested = False
        if self.is_open:
            await self._write(_STREAM_END)
        LOGGER.info("Stopping global status for CDS %s", self.endpoint)

    async def read_register(self, group: int, index: int) -> bytes:
        """Read one register and return the raw frame.

        Raises:
            CdsTimeoutError: If no complete frame arrives within ``read_timeout``.
            CdsProtocolError: If the device closes the stream mid-frame.
            DeviceWriteError: If the socket fails while sending the request.
        """

        async with self._lock:
            if self._resync_required:
                await self._reconnect()

            reader = self._reader
            if reader is None:
                raise DeviceWriteError(f"CDS session to {self.endpoint} is not open")

            await self._write(bytes((_CMD_READ, group, index)))
            try:
                frame = await asyncio.wait_for(
                    reader.readexactly(FRAME_LENGTH), timeout=self.read_timeout
                )
            except asyncio.TimeoutError as exc:
                # a late frame would be read as the answer to the next request
                self._resync_required = True
                raise CdsTimeoutError(
                    f"CDS register 0x{group:02X}/0x{index:02X} timed out "
                    f"after {self.read_timeout:.1f}s"
                ) from exc
            except asyncio.IncompleteReadError as exc:
                self._resync_required = True
                raise CdsProtocolError(
                    f"CDS register 0x{group:02X}/0x{index:02X} returned "
                    f"{len(exc.partial)} of {FRAME_LENGTH} bytes"
                ) from exc
            except OSError as exc:
                self._resync_required = True
                raise DeviceWriteError(
                    f"Reading CDS register from {self.endpoint} failed: {exc}"
                ) from exc

        return frame

    async def read_float(self, register: tuple[int, int]) -> float:
        return decode_float(await self.read_register(*register))

    async def close(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        LOGGER.debug("Disconnected from CDS at %s", self.endpoint)

    async def _reconnect(self) -> None:
        LOGGER.warning("Re-establishing CDS session to %s", self.endpoint)
        await self.close()
        await self.open()
        if self._stream_requested:
            await self._write(_STREAM_BEGIN)

    async def _write(self, payload: bytes) -> None:
        writer = self._writer
        if writer is None:
            raise DeviceWriteError(f"CDS session to {self.endpoint} is not open")
        try:
            writer.write(payload)
            await writer.drain()
        except OSError as exc:
            self._resync_required = True
            raise DeviceWriteError(
                f"Writing to CDS {self.endpoint} failed: {exc}"
            ) from exc


@contextlib.asynccontextmanager
async def cds_stream(
    endpoint: DeviceEndpoint,
    *,
    read_timeout: float = constants.CDS_READ_TIMEOUT_SECONDS,
) -> AsyncIterator[CdsClient]:
    """Yield a streaming :class:`CdsClient`, ending the stream and closing after use."""

    client = CdsClient(endpoint, read_timeout=read_timeout)
    try:
        await client.begin_stream()
        yield client
    finally:
        try:
            await client.end_stream()
        except DeviceWriteError as exc:
            LOGGER.warning("Error stopping global status on %s: %s", endpoint, exc)
        await client.close()
