"""CSV recording of CDS poll cycles."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from .cache import LastValueCache

LOGGER = logging.getLogger(__name__)

CSV_HEADER = "Timestamp,CDS_Power_W,CDS_Voltage_V,CDS_Current_A,Sink_Power_W,Sink_Success\n"
FILE_PREFIX = "measwerte_"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CsvRecorder:
    """Appends one row per completed CDS poll cycle while enabled."""

    def __init__(
        self,
        directory: Path,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.directory = Path(directory)
        self._clock = clock
        self._enabled = False
        self._file_path: Optional[Path] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def file_path(self) -> Optional[Path]:
        return self._file_path

    def start(self) -> Dict[str, object]:
        """Create a new timestamped file with the header row."""

        if self._enabled:
            return {"success": False, "message": "CSV logging already active"}

        timestamp = self._clock().strftime("%Y-%m-%dT%H-%M-%S")
        self.directory.mkdir(parents=True, exist_ok=True)
        file_path = self._create(f"{FILE_PREFIX}{timestamp}")

        self._file_path = file_path
        self._enabled = True
        LOGGER.info("CSV logging initialized: %s", file_path)
        return {"success": True, "filePath": str(file_path)}

    def _create(self, stem: str) -> Path:
        # never reuse a file from an earlier recording within the same second
        suffix = 0
        while True:
            name = f"{stem}.csv" if suffix == 0 else f"{stem}_{suffix}.csv"
            file_path = self.directory / name
            try:
                with file_path.open("x", encoding="utf-8") as stream:
                    stream.write(CSV_HEADER)
            except FileExistsError:
                suffix += 1
                continue
            return file_path

    def stop(self) -> Dict[str, object]:
        file_path = self._file_path
        self._enabled = False
        self._file_path = None
        LOGGER.info("CSV logging stopped")
        return {"success": True, "filePath": str(file_path) if file_path else ""}

    def status(self) -> Dict[str, object]:
        file_path = self._file_path
        return {
            "enabled": self._enabled,
            "filePath": str(file_path) if file_path else "",
            "fileExists": file_path.exists() if file_path else False,
        }

    def append_row(self, cache: LastValueCache) -> bool:
        """Write the current cache contents; failures are logged, never raised."""

        file_path = self._file_path
        if not self._enabled or file_path is None:
            return False

        sink = cache.sink_power
        sink_power = sink.result.payload if sink is not None and sink.succeeded else ""
        sink_success = "true" if sink is not None and sink.succeeded else "false"
        timestamp = self._clock().isoformat(timespec="milliseconds")
        line = (
            f"{timestamp},{cache.power},{cache.voltage},{cache.current},"
            f"{sink_power},{sink_success}\n"
        )
        try:
            with file_path.open("a", encoding="utf-8") as stream:
                stream.write(line)
        except OSError as exc:
            LOGGER.error("Error writing to CSV %s: %s", file_path, exc)
            return False
        return True
