from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_TIMEOUT = 10.0
DEFAULT_HOST = "0.0.0.0"

_BASE_URL_ENV = "EXPORTER_BASE_URL"
_TIMEOUT_ENV = "CLI_HTTP_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if timeout is None:
        timeout = _read_float(os.getenv(_TIMEOUT_ENV), DEFAULT_TIMEOUT)
    return CLIConfig(base_url=url.rstrip("/"), timeout=timeout)


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` into its parts; an empty host listens on all interfaces.

    IPv6 hosts are written in brackets, e.g. ``[::1]:8080``.
    """
    host, sep, port_text = address.strip().rpartition(":")
    if not sep:
        raise ValueError(f"Listen address {address!r} must be of the form host:port.")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"Invalid port {port_text!r} in listen address {address!r}.") from exc
    if not 0 < port < 65536:
        raise ValueError(f"Port {port} in listen address {address!r} is out of range.")
    return host or DEFAULT_HOST, port
