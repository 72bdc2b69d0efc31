"""Binding of opened meters to the gauges published for them."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Iterable, Iterator, List, Optional, Sequence

from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector, CollectorRegistry

from devices.errors import DeviceOpenError
from devices.transport import MeterHandle, MeterTransport
from models.records import Reading, SensorDescriptor
from services.identity import identity_hex, sensor_identity

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "meter"


class BindingError(Exception):
    """Startup could not bind every enumerated meter."""


class SensorOpenError(BindingError):
    def __init__(self, descriptor: SensorDescriptor, cause: DeviceOpenError) -> None:
        super().__init__(f"Could not open device at path {descriptor.path!r}: {cause.reason}")
        self.descriptor = descriptor


class MetricRegistrationError(BindingError):
    def __init__(self, descriptor: SensorDescriptor, detail: str) -> None:
        super().__init__(f"Could not register metrics for {descriptor.path!r}: {detail}")
        self.descriptor = descriptor


class MetricBinding(Collector):
    """Live gauges for one meter.

    Temperature and CO2 are stored as a single ``Reading`` and swapped under
    one lock, so a scrape always sees both values from the same sample.
    Nothing is exported until the first successful read, nor after the
    sampling loop has halted on a failed read.
    """

    def __init__(
        self,
        descriptor: SensorDescriptor,
        handle: MeterHandle,
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        self.descriptor = descriptor
        self.handle = handle
        self.identity = sensor_identity(descriptor.path)
        self.sensor_id = identity_hex(self.identity)
        self.temperature_name = f"{prefix}_{self.sensor_id}_temperature_celsius"
        self.co2_name = f"{prefix}_{self.sensor_id}_co2_ppm"
        self._reading: Optional[Reading] = None
        self._halted = False
        self._lock = Lock()

    @property
    def reading(self) -> Optional[Reading]:
        with self._lock:
            return self._reading

    def update(self, reading: Reading) -> None:
        with self._lock:
            self._reading = reading

    def halt(self) -> None:
        with self._lock:
            self._halted = True

    def describe(self) -> List[GaugeMetricFamily]:
        return self._families(None)

    def collect(self) -> List[GaugeMetricFamily]:
        with self._lock:
            reading = None if self._halted else self._reading
        if reading is None:
            return []
        return self._families(reading)

    def _families(self, reading: Optional[Reading]) -> List[GaugeMetricFamily]:
        temperature = GaugeMetricFamily(
            self.temperature_name,
            f"Current temperature in Celsius for device {self.sensor_id}",
            value=None if reading is None else reading.temperature,
        )
        co2 = GaugeMetricFamily(
            self.co2_name,
            f"Current CO2 level (ppm) for device {self.sensor_id}",
            value=None if reading is None else float(reading.co2),
        )
        return [temperature, co2]

    def __repr__(self) -> str:
        return f"MetricBinding(path={self.descriptor.path!r}, sensor_id={self.sensor_id!r})"


class MetricBindingSet(Sequence[MetricBinding]):
    """Bindings in enumeration order. Closed once startup has built it."""

    def __init__(self, bindings: Iterable[MetricBinding] = ()) -> None:
        self._bindings = tuple(bindings)

    def __getitem__(self, index):
        return self._bindings[index]

    def __len__(self) -> int:
        return len(self._bindings)

    def __iter__(self) -> Iterator[MetricBinding]:
        return iter(self._bindings)

    def halt(self) -> None:
        for binding in self._bindings:
            binding.halt()

    def close(self) -> None:
        for binding in self._bindings:
            binding.handle.close()


def bind_sensors(
    descriptors: Iterable[SensorDescriptor],
    transport: MeterTransport,
    registry: CollectorRegistry,
    prefix: str = DEFAULT_PREFIX,
) -> MetricBindingSet:
    """Open every descriptor and register its gauges, all or nothing.

    Raises ``SensorOpenError`` if any meter cannot be opened and
    ``MetricRegistrationError`` if its metric names are already taken. Handles
    opened before the failure are closed again.
    """
    bindings: List[MetricBinding] = []
    try:
        for descriptor in descriptors:
            try:
                handle = transport.open(descriptor)
            except DeviceOpenError as exc:
                logger.error(
                    "Could not open meter",
                    extra={"device_path": descriptor.path, "reason": exc.reason},
                )
                raise SensorOpenError(descriptor, exc) from exc

            binding = MetricBinding(descriptor, handle, prefix=prefix)
            try:
                registry.register(binding)
            except ValueError as exc:
                handle.close()
                raise MetricRegistrationError(descriptor, str(exc)) from exc

            bindings.append(binding)
            logger.info(
                "Bound meter",
                extra={
                    "device_path": descriptor.path,
                    "serial": descriptor.serial,
                    "sensor_id": binding.sensor_id,
                },
            )
    except BindingError:
        MetricBindingSet(bindings).close()
        raise

    return MetricBindingSet(bindings)
