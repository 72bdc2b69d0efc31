from __future__ import annotations

import itertools
import logging
import time
from threading import Event
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from devices.errors import DeviceOpenError, DeviceReadError
from models.records import Reading, SensorDescriptor

logger = logging.getLogger(__name__)

ScriptStep = Union[Reading, Exception]


def synthetic_readings(seed: int = 0) -> Iterator[Reading]:
    """Endless, deterministic series that drifts around room conditions."""
    for step in itertools.count():
        phase = (step + seed) % 20
        swing = phase if phase < 10 else 20 - phase
        yield Reading(temperature=round(21.0 + swing * 0.1, 2), co2=600 + swing * 15)


class MockMeter:
    """In-process meter replaying a script of readings and failures.

    Once the script is exhausted the last reading is repeated. ``interval``
    mimics the hardware, which only answers once a new sample is ready.
    """

    def __init__(
        self,
        path: str,
        script: Optional[Sequence[ScriptStep]] = None,
        interval: float = 0.0,
        seed: int = 0,
    ) -> None:
        self.path = path
        self.interval = interval
        self.reads = 0
        self.closed = False
        self._script: Iterator[ScriptStep] = (
            iter(script) if script is not None else synthetic_readings(seed)
        )
        self._last: Optional[Reading] = None
        self._wake = Event()

    def read(self) -> Reading:
        if self.closed:
            raise DeviceReadError(self.path, "device disconnected")
        if self.interval:
            self._wake.wait(self.interval)
        self.reads += 1

        step = next(self._script, None)
        if step is None:
            if self._last is None:
                raise DeviceReadError(self.path, "no data available")
            return self._last
        if isinstance(step, DeviceReadError):
            raise step
        if isinstance(step, Exception):
            raise DeviceReadError(self.path, str(step)) from step
        self._last = step
        return step

    def close(self) -> None:
        self.closed = True
        self._wake.set()

    def __repr__(self) -> str:
        return f"MockMeter(path={self.path!r})"


class MockTransport:
    name = "mock"

    def __init__(
        self,
        paths: Iterable[str] = (),
        scripts: Optional[Mapping[str, Sequence[ScriptStep]]] = None,
        unopenable: Iterable[str] = (),
        interval: float = 0.0,
        serials: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.paths: List[str] = list(paths)
        self.scripts = dict(scripts or {})
        self.unopenable = set(unopenable)
        self.interval = interval
        self.serials = dict(serials or {})
        self.opened: Dict[str, MockMeter] = {}

    def enumerate(self) -> List[SensorDescriptor]:
        return [SensorDescriptor(path=path, serial=self.serials.get(path)) for path in self.paths]

    def open(self, descriptor: SensorDescriptor) -> MockMeter:
        if descriptor.path in self.unopenable:
            raise DeviceOpenError(descriptor.path, "device busy")
        meter = MockMeter(
            path=descriptor.path,
            script=self.scripts.get(descriptor.path),
            interval=self.interval,
            seed=len(self.opened) * 7,
        )
        self.opened[descriptor.path] = meter
        logger.debug("Opened mock meter", extra={"device_path": descriptor.path})
        return meter
