from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple


_LISTEN_ADDRESS_ENV = "EXPORTER_LISTEN_ADDRESS"
_TRANSPORT_ENV = "METER_TRANSPORT"
_METRIC_PREFIX_ENV = "METRIC_PREFIX"
_MOCK_PATHS_ENV = "MOCK_METER_PATHS"
_MOCK_INTERVAL_ENV = "MOCK_METER_INTERVAL"
_SYSFS_ROOT_ENV = "HIDRAW_SYSFS_ROOT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRANSPORTS = ("hidraw", "mock")


@dataclass(frozen=True)
class Settings:
    listen_address: str
    transport: str
    metric_prefix: str
    mock_paths: Tuple[str, ...]
    mock_interval: float
    sysfs_root: str
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_transport(default: str) -> str:
    candidate = _read_str_env(_TRANSPORT_ENV, default).lower()
    return candidate if candidate in _TRANSPORTS else default


def _read_path_list(name: str) -> Tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _read_interval(default: float) -> float:
    value = os.getenv(_MOCK_INTERVAL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        listen_address=_read_str_env(_LISTEN_ADDRESS_ENV, ":8080"),
        transport=_read_transport("hidraw"),
        metric_prefix=_read_str_env(_METRIC_PREFIX_ENV, "meter"),
        mock_paths=_read_path_list(_MOCK_PATHS_ENV),
        mock_interval=_read_interval(1.0),
        sysfs_root=_read_str_env(_SYSFS_ROOT_ENV, "/sys/class/hidraw"),
        log_level=_read_log_level("INFO"),
    )
