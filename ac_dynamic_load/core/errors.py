"""Error taxonomy for bench device communication."""

from __future__ import annotations


class BenchError(Exception):
    """Base class for all ac-dynamic-load errors."""


class DeviceUnreachableError(BenchError, ConnectionError):
    """Raised when a TCP session to a device cannot be established."""


class DeviceWriteError(BenchError, ConnectionError):
    """Raised when the socket fails while a command is being sent."""


class CdsTimeoutError(BenchError, TimeoutError):
    """Raised when the CDS unit does not answer a register read in time."""


class CdsProtocolError(BenchError):
    """Raised when a CDS response frame cannot be decoded."""


class ConfigurationMissingError(BenchError):
    """Raised when the configuration file is absent or lacks device addresses."""
