import asyncio
import struct


def float_frame(value: float, tag: int = 0x00) -> bytes:
    return bytes((tag,)) + struct.pack("<f", value)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
