"""Protocol definitions for device clients."""

from __future__ import annotations

from typing import Protocol

class RegisterReader(Protocol):
    """Minimal contract for a persistent CDS register session."""

    async def open(self) -> None:
        """Establish the underlying TCP connection."""
        ...

    async def begin_stream(self) -> None:
        """Start the register streaming session on the device."""
        ...

    async def read_register(self, group: int, index: int) -> bytes:
        """Read one register and return its raw 5-byte frame."""
        ...

    async def end_stream(self) -> None:
        """Stop the register streaming session."""
        ...

    async def close(self) -> None:
        """Close the underlying TCP connection."""
        ...

