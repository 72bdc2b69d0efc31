"""Tests for binding meters to their gauges."""

from __future__ import annotations

import pytest
from prometheus_client import generate_latest
from prometheus_client.registry import CollectorRegistry

from devices.mock_meter import MockTransport
from models.records import Reading, SensorDescriptor
from services.bindings import (
    MetricBinding,
    MetricRegistrationError,
    SensorOpenError,
    bind_sensors,
)
from services.identity import identity_hex, sensor_identity


def _registry() -> CollectorRegistry:
    return CollectorRegistry(auto_describe=True)


def test_bindings_follow_enumeration_order() -> None:
    transport = MockTransport(paths=["/dev/hid1", "/dev/hid0", "/dev/hid2"])

    bindings = bind_sensors(transport.enumerate(), transport, _registry())

    assert len(bindings) == 3
    assert [b.descriptor.path for b in bindings] == ["/dev/hid1", "/dev/hid0", "/dev/hid2"]
    assert [b.handle for b in bindings] == [transport.opened[p] for p in ("/dev/hid1", "/dev/hid0", "/dev/hid2")]


def test_metric_names_embed_hex_identity() -> None:
    transport = MockTransport(paths=["/dev/hid0"])

    (binding,) = bind_sensors(transport.enumerate(), transport, _registry(), prefix="office")

    hex_id = identity_hex(sensor_identity("/dev/hid0"))
    assert binding.sensor_id == hex_id
    assert binding.temperature_name == f"office_{hex_id}_temperature_celsius"
    assert binding.co2_name == f"office_{hex_id}_co2_ppm"


def test_serial_does_not_affect_identity() -> None:
    transport = MockTransport(
        paths=["/dev/hid0", "/dev/hid1"],
        serials={"/dev/hid0": "1.40", "/dev/hid1": "1.40"},
    )

    first, second = bind_sensors(transport.enumerate(), transport, _registry())

    assert first.sensor_id != second.sensor_id
    assert first.temperature_name != second.temperature_name


def test_no_descriptors_yield_empty_set() -> None:
    transport = MockTransport()
    registry = _registry()

    bindings = bind_sensors(transport.enumerate(), transport, registry)

    assert len(bindings) == 0
    assert list(bindings) == []
    assert generate_latest(registry) == b""


def test_open_failure_aborts_setup_and_closes_opened_handles() -> None:
    transport = MockTransport(paths=["/dev/hid0", "/dev/hid1"], unopenable=["/dev/hid1"])

    with pytest.raises(SensorOpenError) as excinfo:
        bind_sensors(transport.enumerate(), transport, _registry())

    assert excinfo.value.descriptor.path == "/dev/hid1"
    assert "/dev/hid1" in str(excinfo.value)
    assert transport.opened["/dev/hid0"].closed is True


def test_name_collision_is_fatal() -> None:
    registry = _registry()
    descriptor = SensorDescriptor(path="/dev/hid0")
    first = MockTransport()
    second = MockTransport()
    bind_sensors([descriptor], first, registry)

    with pytest.raises(MetricRegistrationError) as excinfo:
        bind_sensors([descriptor], second, registry)

    assert "Duplicated" in str(excinfo.value)
    assert second.opened["/dev/hid0"].closed is True
    assert first.opened["/dev/hid0"].closed is False


def test_binding_exports_nothing_before_first_read() -> None:
    transport = MockTransport()
    binding = MetricBinding(SensorDescriptor(path="/dev/hid0"), transport.open(SensorDescriptor(path="/dev/hid0")))

    assert binding.reading is None
    assert binding.collect() == []
    assert [family.name for family in binding.describe()] == [binding.temperature_name, binding.co2_name]


def test_binding_exports_latest_pair() -> None:
    registry = _registry()
    transport = MockTransport(paths=["/dev/hid0"])
    (binding,) = bind_sensors(transport.enumerate(), transport, registry)

    binding.update(Reading(temperature=21.5, co2=650))
    binding.update(Reading(temperature=22.25, co2=710))

    assert registry.get_sample_value(binding.temperature_name) == 22.25
    assert registry.get_sample_value(binding.co2_name) == 710.0
    text = generate_latest(registry).decode("utf-8")
    assert f"Current temperature in Celsius for device {binding.sensor_id}" in text
    assert f"Current CO2 level (ppm) for device {binding.sensor_id}" in text


def test_halted_binding_stops_exporting() -> None:
    registry = _registry()
    transport = MockTransport(paths=["/dev/hid0", "/dev/hid1"])
    bindings = bind_sensors(transport.enumerate(), transport, registry)
    bindings[0].update(Reading(temperature=21.5, co2=650))
    bindings[1].update(Reading(temperature=22.0, co2=700))

    bindings.halt()

    assert registry.get_sample_value(bindings[0].temperature_name) is None
    assert registry.get_sample_value(bindings[1].co2_name) is None
    assert bindings[0].reading == Reading(temperature=21.5, co2=650)
