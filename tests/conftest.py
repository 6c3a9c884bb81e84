import asyncio
import socket
from typing import Optional, Union

import pytest
import pytest_asyncio

from helpers import float_frame


class FakeScpiDevice:
    """Line-based SCPI device; answers known queries, stays silent otherwise."""

    def __init__(self, responses: Optional[dict[str, str]] = None) -> None:
        self.responses = {"*IDN?": "FAKE,SINK,0,1.0"}
        self.responses.update(responses or {})
        self.commands: list[str] = []
        self.sessions: list[list[str]] = []
        self.connections = 0
        self.open_connections = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self.port = 0

    async def start(self) -> int:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self.port

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.connections += 1
        self.open_connections += 1
        session: list[str] = []
        self.sessions.append(session)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                command = line.decode("ascii").strip()
                self.commands.append(command)
                session.append(command)
                response = self.responses.get(command)
                if response is not None:
                    writer.write(f"{response}\n".encode("ascii"))
                    await writer.drain()
        except ConnectionError:
            pass
        finally:
            self.open_connections -= 1
            writer.close()


class FakeCdsDevice:
    """Binary register device answering reads while a stream is open."""

    def __init__(
        self, registers: Optional[dict[tuple[int, int], Union[float, bytes]]] = None
    ) -> None:
        self.registers = dict(registers or {})
        self.delays: dict[tuple[int, int], float] = {}
        self.connections = 0
        self.open_connections = 0
        self.streaming_sessions = 0
        self.stream_events: list[str] = []
        self.reads: list[tuple[int, int]] = []
        self._server: Optional[asyncio.AbstractServer] = None
        self.port = 0

    async def start(self) -> int:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self.port

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.connections += 1
        self.open_connections += 1
        # stream state belongs to the TCP session, a new connection starts closed
        streaming = False
        try:
            while True:
                command = await reader.read(1)
                if not command:
                    break
                if command[0] == 0x02:
                    flag = await reader.readexactly(1)
                    if flag[0] == 0x01 and not streaming:
                        self.streaming_sessions += 1
                    elif flag[0] != 0x01 and streaming:
                        self.streaming_sessions -= 1
                    streaming = flag[0] == 0x01
                    self.stream_events.append("begin" if streaming else "end")
                    continue
                address = await reader.readexactly(2)
                register = (address[0], address[1])
                self.reads.append(register)
                value = self.registers.get(register)
                if value is None or not streaming:
                    continue
                delay = self.delays.get(register)
                if delay:
                    await asyncio.sleep(delay)
                frame = value if isinstance(value, bytes) else float_frame(value)
                writer.write(frame)
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            if streaming:
                self.streaming_sessions -= 1
            self.open_connections -= 1
            writer.close()


@pytest_asyncio.fixture
async def scpi_device():
    device = FakeScpiDevice()
    await device.start()
    yield device
    await device.stop()


@pytest_asyncio.fixture
async def cds_device():
    device = FakeCdsDevice()
    await device.start()
    yield device
    await device.stop()


@pytest.fixture
def refused_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
