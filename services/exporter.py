"""Wiring of transport, registry, bindings and sampler into one runtime."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from prometheus_client.registry import CollectorRegistry

from devices.transport import MeterTransport, build_default_transport
from services.bindings import DEFAULT_PREFIX, MetricBindingSet, bind_sensors
from services.sampler import FailureCallback, SamplingLoop
from settings import get_settings

logger = logging.getLogger(__name__)

_SHUTDOWN_JOIN_SECONDS = 2.0


@dataclass
class ExporterRuntime:
    """Everything the scrape handler and the sampling loop share.

    The registry is owned here and handed to the HTTP layer, so nothing goes
    through prometheus_client's process-wide default registry.
    """

    transport: MeterTransport
    registry: CollectorRegistry
    bindings: MetricBindingSet
    sampler: SamplingLoop

    @property
    def healthy(self) -> bool:
        return self.sampler.failure is None

    def start(self, on_failure: Optional[FailureCallback] = None) -> None:
        self.sampler.start(on_failure)

    def shutdown(self) -> None:
        self.sampler.stop(timeout=0)
        self.bindings.close()
        self.sampler.stop(timeout=_SHUTDOWN_JOIN_SECONDS)


def build_runtime(transport: MeterTransport, prefix: str = DEFAULT_PREFIX) -> ExporterRuntime:
    """Enumerate once and bind every meter found.

    Finding no meters is not an error; the endpoint then serves no meter
    gauges. Open and registration failures propagate as ``BindingError``.
    """
    descriptors = transport.enumerate()
    if not descriptors:
        logger.warning("No meters found", extra={"sensor_count": 0})

    registry = CollectorRegistry(auto_describe=True)
    bindings = bind_sensors(descriptors, transport, registry, prefix=prefix)
    logger.info("Bound all meters", extra={"sensor_count": len(bindings)})
    return ExporterRuntime(
        transport=transport,
        registry=registry,
        bindings=bindings,
        sampler=SamplingLoop(bindings),
    )


@lru_cache
def build_default_runtime() -> ExporterRuntime:
    """Factory that wires the runtime from settings."""
    settings = get_settings()
    return build_runtime(build_default_transport(), prefix=settings.metric_prefix)
