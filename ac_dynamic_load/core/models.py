"""Domain models for device endpoints and measurement results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


@dataclass(frozen=True, slots=True)
class DeviceEndpoint:
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(slots=True)
class ScpiResult:
    succeeded: bool
    payload: str

    @property
    def watts(self) -> Optional[float]:
        """Payload interpreted as a number, or None when it is not numeric."""
        try:
            return float(self.payload)
        except ValueError:
            return None

    def as_dict(self) -> dict[str, object]:
        return {"succeeded": self.succeeded, "msg": self.payload, "watts": self.watts}


@dataclass(slots=True)
class SinkPowerReading:
    result: ScpiResult
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.result.succeeded

    @property
    def watts(self) -> Optional[float]:
        return self.result.watts

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        reference = now or datetime.now(timezone.utc)
        return (reference - self.received_at).total_seconds()

    def as_dict(self, now: Optional[datetime] = None) -> dict[str, object]:
        payload = self.result.as_dict()
        payload["receivedAt"] = self.received_at.isoformat(timespec="seconds")
        payload["ageSeconds"] = round(self.age_seconds(now), 3)
        return payload


class GroupMode(str, Enum):
    """Parallel operation role of a SCPI device."""

    MASTER = "MAST"
    SLAVE = "SLAV"
    NONE = "NONE"


class CpState(str, Enum):
    """IEC 61851 control pilot states reported by the CDS."""

    A1 = "A1"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"
    F = "F"
    UNKNOWN = "Unknown"
