"""Domain models shared across devices and services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class SensorDescriptor:
    """An enumerated meter, located by its transport path.

    ``serial`` is whatever the device reports about itself. Many meters of the
    same model share a serial (or have none), so it is informational only.
    """

    path: str
    serial: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Reading:
    """One physical sample: temperature in Celsius and CO2 in ppm."""

    temperature: float
    co2: int
