"""Core primitives for ac-dynamic-load."""

from .errors import (
    BenchError,
    CdsProtocolError,
    CdsTimeoutError,
    ConfigurationMissingError,
    DeviceUnreachableError,
    DeviceWriteError,
)
from .models import CpState, DeviceEndpoint, GroupMode, ScpiResult, SinkPowerReading
from .protocols import RegisterReader

__all__ = [
    "BenchError",
    "CdsProtocolError",
    "CdsTimeoutError",
    "ConfigurationMissingError",
    "CpState",
    "DeviceEndpoint",
    "DeviceUnreachableError",
    "DeviceWriteError",
    "GroupMode",
    "RegisterReader",
    "ScpiResult",
    "SinkPowerReading",
]
