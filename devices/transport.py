from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Protocol

from devices.meter import HidrawTransport
from devices.mock_meter import MockTransport
from models.records import Reading, SensorDescriptor
from settings import get_settings


class MeterHandle(Protocol):
    """An open connection to one meter, used by a single reader thread."""

    path: str

    def read(self) -> Reading:
        """Block until a complete sample is available and return it.

        Raises ``DeviceReadError`` on I/O errors, malformed reports or disconnect.
        """
        ...

    def close(self) -> None:
        ...


class MeterTransport(Protocol):
    """Discovery and opening of meters for one kind of connection."""

    name: str

    def enumerate(self) -> List[SensorDescriptor]:
        """Return every attached meter in a stable order; empty when none are found."""
        ...

    def open(self, descriptor: SensorDescriptor) -> MeterHandle:
        """Claim the meter behind ``descriptor``; raises ``DeviceOpenError``."""
        ...


@lru_cache
def build_default_transport(name: Optional[str] = None) -> MeterTransport:
    """Factory that wires the transport selected in settings."""
    settings = get_settings()
    transport = settings.transport if name is None else name
    if transport == "mock":
        return MockTransport(paths=settings.mock_paths, interval=settings.mock_interval)
    if transport == "hidraw":
        return HidrawTransport(sysfs_root=Path(settings.sysfs_root))
    raise ValueError(f"Unknown meter transport {transport!r}.")
