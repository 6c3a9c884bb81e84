"""Last known measurement values shared between pollers and callers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from ..core import SinkPowerReading


@dataclass(slots=True)
class LastValueCache:
    """Most recent CDS and sink readings.

    Each field has exactly one writer (its poller). All access happens on the
    event loop thread and every update is a single attribute assignment, so a
    reader always sees either the previous or the new value of a field. No
    consistency across fields is provided.
    """

    power: float = 0
    voltage: float = 0
    current: float = 0
    sink_power: Optional[SinkPowerReading] = None

    def snapshot(self) -> Dict[str, object]:
        sink = self.sink_power
        return {
            "power": self.power,
            "voltage": self.voltage,
            "current": self.current,
            "sinkPower": sink.as_dict() if sink is not None else None,
        }
