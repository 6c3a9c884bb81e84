"""Telemetry polling, last-value cache and CSV recording."""

from .cache import LastValueCache
from .polling import CdsPoller, PollerState, PollingSession, SinkPowerPoller
from .recorder import CSV_HEADER, CsvRecorder

__all__ = [
    "CSV_HEADER",
    "CdsPoller",
    "CsvRecorder",
    "LastValueCache",
    "PollerState",
    "PollingSession",
    "SinkPowerPoller",
]
