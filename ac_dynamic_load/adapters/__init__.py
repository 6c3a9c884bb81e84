"""Adapter modules for the bench devices."""

from .cds import CdsClient, cds_stream, decode_cp_state, decode_float
from .scpi import NO_DATA_RECEIVED, ScpiClient, scpi_session

__all__ = [
    "CdsClient",
    "cds_stream",
    "NO_DATA_RECEIVED",
    "ScpiClient",
    "decode_cp_state",
    "decode_float",
    "scpi_session",
]
