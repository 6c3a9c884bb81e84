"""Constants used across the ac-dynamic-load package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "ac-dynamic-load"
DEFAULT_STORAGE_PATH = Path.home() / ".ac-dynamic-load"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = DEFAULT_STORAGE_PATH / "config" / DEFAULT_CONFIG_FILENAME
DEFAULT_LOG_PATH = DEFAULT_STORAGE_PATH / "log" / f"{APP_NAME}.log"
DEFAULT_RECORDING_PATH = DEFAULT_STORAGE_PATH / "data"

SCPI_PORT = 5025
CDS_PORT = 51001

SCPI_RESPONSE_TIMEOUT_SECONDS = 1.0
CDS_READ_TIMEOUT_SECONDS = 2.0

# Output is only allowed once the CDS reports at least this line voltage.
SAFE_VOLTAGE_THRESHOLD = 200.0

DEFAULT_VOLTAGE_HOST = "192.168.100.180"
DEFAULT_CURRENT_HOST = "192.168.100.182"
DEFAULT_CDS_HOST = "192.168.100.80"
DEFAULT_VOLTAGE_LIMIT = 692.0
DEFAULT_CURRENT_LIMIT = 32.0
DEFAULT_MAX_KW = 22.0

DEFAULT_CDS_INTERVAL_MS = 400
DEFAULT_SINK_INTERVAL_MS = 1000
DEFAULT_SINK_TIMEOUT_MS = 3000
