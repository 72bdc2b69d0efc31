"""The sampling loop that keeps every bound meter's gauges current."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Event, Thread
from typing import Callable, Optional, Union

from devices.errors import DeviceReadError
from models.records import Reading
from services.bindings import MetricBinding, MetricBindingSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadSuccess:
    binding: MetricBinding
    reading: Reading


@dataclass(frozen=True)
class ReadFailure:
    # None when the loop itself crashed rather than a meter.
    binding: Optional[MetricBinding]
    reason: str

    @property
    def device_path(self) -> Optional[str]:
        return self.binding.descriptor.path if self.binding is not None else None


ReadOutcome = Union[ReadSuccess, ReadFailure]
FailureCallback = Callable[[ReadFailure], None]


def sample(binding: MetricBinding) -> ReadOutcome:
    """Read one meter, turning device errors into a ``ReadFailure``."""
    try:
        reading = binding.handle.read()
    except DeviceReadError as exc:
        return ReadFailure(binding=binding, reason=exc.reason)
    return ReadSuccess(binding=binding, reading=reading)


class SamplingLoop:
    """Reads every binding in order, forever, and stops at the first failure.

    There is no delay between cycles; the meters block until they have a new
    sample. A failing meter halts the whole loop: no retry, no skipping, so
    the process never serves values it can no longer vouch for. Every binding
    is halted on failure, so scrapes stop returning readings at once. Whether
    that ends the process is up to whoever passed ``on_failure``.
    """

    def __init__(self, bindings: MetricBindingSet) -> None:
        self.bindings = bindings
        self.cycles = 0
        self.failure: Optional[ReadFailure] = None
        self._stop = Event()
        self._thread: Optional[Thread] = None

    @property
    def alive(self) -> bool:
        return self.failure is None and not self._stop.is_set()

    def run_cycle(self) -> Optional[ReadFailure]:
        for binding in self.bindings:
            outcome = sample(binding)
            if isinstance(outcome, ReadFailure):
                return outcome
            binding.update(outcome.reading)
            logger.debug(
                "Updated meter",
                extra={
                    "sensor_id": binding.sensor_id,
                    "temperature": outcome.reading.temperature,
                    "co2": outcome.reading.co2,
                },
            )
        self.cycles += 1
        return None

    def run(self) -> Optional[ReadFailure]:
        if not self.bindings:
            self._stop.wait()
            return None

        while not self._stop.is_set():
            failure = self.run_cycle()
            if failure is not None:
                # Handles are closed on shutdown, which fails the pending read.
                if self._stop.is_set():
                    return None
                self.bindings.halt()
                return failure
        return None

    def start(self, on_failure: Optional[FailureCallback] = None) -> None:
        if self._thread is not None:
            raise RuntimeError("Sampling loop already started.")
        logger.info("Sampling loop started", extra={"sensor_count": len(self.bindings)})
        self._thread = Thread(
            target=self._run_and_report,
            args=(on_failure,),
            name="sampling-loop",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run_and_report(self, on_failure: Optional[FailureCallback]) -> None:
        try:
            failure = self.run()
        except Exception as exc:
            logger.exception("Sampling loop crashed")
            self.bindings.halt()
            failure = ReadFailure(binding=None, reason=f"sampling loop crashed: {exc}")

        if failure is None:
            return

        self.failure = failure
        logger.critical(
            "Failed to read meter; sampling halted",
            extra={
                "device_path": failure.device_path,
                "sensor_id": failure.binding.sensor_id if failure.binding else None,
                "reason": failure.reason,
            },
        )
        if on_failure is not None:
            on_failure(failure)
