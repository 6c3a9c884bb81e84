"""Configuration loader for ac-dynamic-load."""

from __future__ import annotations

from configparser import ConfigParser
from configparser import Error as ConfigParserError
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants
from .core import ConfigurationMissingError

DEVICE_KEYS = ("voltage_host", "current_host", "cds_host")


@dataclass(frozen=True, slots=True)
class DevicesConfig:
    voltage_host: str
    current_host: str
    cds_host: str


@dataclass(frozen=True, slots=True)
class LimitsConfig:
    voltage_limit: float = constants.DEFAULT_VOLTAGE_LIMIT
    current_limit: float = constants.DEFAULT_CURRENT_LIMIT
    max_kw: float = constants.DEFAULT_MAX_KW


@dataclass(frozen=True, slots=True)
class PollingConfig:
    cds_interval_ms: int = constants.DEFAULT_CDS_INTERVAL_MS
    sink_interval_ms: int = constants.DEFAULT_SINK_INTERVAL_MS
    sink_timeout_ms: int = constants.DEFAULT_SINK_TIMEOUT_MS
    scpi_response_timeout_ms: int = int(constants.SCPI_RESPONSE_TIMEOUT_SECONDS * 1000)
    cds_read_timeout_ms: int = int(constants.CDS_READ_TIMEOUT_SECONDS * 1000)


@dataclass(frozen=True, slots=True)
class RecordingConfig:
    directory: Path = constants.DEFAULT_RECORDING_PATH


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH


@dataclass(frozen=True, slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class BenchConfig:
    devices: DevicesConfig
    limits: LimitsConfig
    polling: PollingConfig
    recording: RecordingConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def _defaults() -> dict[str, dict[str, str]]:
    polling = PollingConfig()
    return {
        "limits": {
            "voltage_limit": str(constants.DEFAULT_VOLTAGE_LIMIT),
            "current_limit": str(constants.DEFAULT_CURRENT_LIMIT),
            "max_kw": str(constants.DEFAULT_MAX_KW),
        },
        "polling": {
            "cds_interval_ms": str(polling.cds_interval_ms),
            "sink_interval_ms": str(polling.sink_interval_ms),
            "sink_timeout_ms": str(polling.sink_timeout_ms),
            "scpi_response_timeout_ms": str(polling.scpi_response_timeout_ms),
            "cds_read_timeout_ms": str(polling.cds_read_timeout_ms),
        },
        "recording": {
            "directory": str(constants.DEFAULT_RECORDING_PATH),
        },
        "logging": {
            "level": "INFO",
            "path": str(constants.DEFAULT_LOG_PATH),
        },
        "health": {
            "enabled": "false",
            "host": "127.0.0.1",
            "port": "0",
        },
    }


def load_config(path: Optional[Path] = None) -> BenchConfig:
    """Load configuration from disk.

    Device addresses are never defaulted: a missing or unreadable file, or one
    without a complete ``[devices]`` section, raises
    :class:`ConfigurationMissingError` so the caller can route the user to
    fix the configuration. All other sections fall back to defaults.
    """

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(_defaults())

    try:
        read_files = parser.read(config_path, encoding="utf-8")
    except (ConfigParserError, UnicodeDecodeError) as exc:
        raise ConfigurationMissingError(
            f"Configuration file {config_path} is unreadable: {exc}"
        ) from exc
    if not read_files:
        raise ConfigurationMissingError(f"Configuration file {config_path} not found")

    missing = [
        key
        for key in DEVICE_KEYS
        if not parser.get("devices", key, fallback="").strip()
    ]
    if missing:
        raise ConfigurationMissingError(
            f"Configuration file {config_path} is missing device addresses: "
            + ", ".join(missing)
        )

    devices = DevicesConfig(
        voltage_host=parser.get("devices", "voltage_host").strip(),
        current_host=parser.get("devices", "current_host").strip(),
        cds_host=parser.get("devices", "cds_host").strip(),
    )

    limits = LimitsConfig(
        voltage_limit=parser.getfloat("limits", "voltage_limit"),
        current_limit=parser.getfloat("limits", "current_limit"),
        max_kw=parser.getfloat("limits", "max_kw"),
    )

    polling = PollingConfig(
        cds_interval_ms=max(1, parser.getint("polling", "cds_interval_ms")),
        sink_interval_ms=max(1, parser.getint("polling", "sink_interval_ms")),
        sink_timeout_ms=max(1, parser.getint("polling", "sink_timeout_ms")),
        scpi_response_timeout_ms=max(
            1, parser.getint("polling", "scpi_response_timeout_ms")
        ),
        cds_read_timeout_ms=max(1, parser.getint("polling", "cds_read_timeout_ms")),
    )

    recording = RecordingConfig(
        directory=Path(parser.get("recording", "directory")).expanduser(),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return BenchConfig(
        devices=devices,
        limits=limits,
        polling=polling,
        recording=recording,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def write_default_config(path: Optional[Path] = None, *, force: bool = False) -> Path:
    """Write a configuration file with the bench's factory addresses."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    if config_path.exists() and not force:
        return config_path

    parser = ConfigParser()
    parser.read_dict(
        {
            "devices": {
                "voltage_host": constants.DEFAULT_VOLTAGE_HOST,
                "current_host": constants.DEFAULT_CURRENT_HOST,
                "cds_host": constants.DEFAULT_CDS_HOST,
            },
            **_defaults(),
        }
    )
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        parser.write(stream)
    return config_path


def save_config(config: BenchConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
