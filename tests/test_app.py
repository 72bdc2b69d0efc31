import os
import signal
import threading
import time
from typing import Dict, Iterator

import pytest
from fastapi.testclient import TestClient
from prometheus_client.parser import text_string_to_metric_families

from app.main import create_app
from devices.errors import DeviceReadError
from devices.mock_meter import MockTransport
from devices.transport import build_default_transport
from models.records import Reading
from services.exporter import ExporterRuntime, build_default_runtime, build_runtime
from services.identity import identity_hex, sensor_identity
from settings import get_settings


def _scraped_values(client: TestClient) -> Dict[str, float]:
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    return {
        sample.name: sample.value
        for family in text_string_to_metric_families(response.text)
        for sample in family.samples
    }


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    pytest.fail("Condition not met before timeout.")


@pytest.fixture
def two_meter_runtime() -> Iterator[ExporterRuntime]:
    transport = MockTransport(
        paths=["/dev/hid0", "/dev/hid1"],
        scripts={
            "/dev/hid0": [Reading(21.5, 650)],
            "/dev/hid1": [Reading(22.0, 700)],
        },
    )
    runtime = build_runtime(transport)
    yield runtime
    runtime.shutdown()


def test_metrics_after_first_cycle(two_meter_runtime: ExporterRuntime) -> None:
    assert two_meter_runtime.sampler.run_cycle() is None
    client = TestClient(create_app(two_meter_runtime))

    values = _scraped_values(client)

    hid0 = identity_hex(sensor_identity("/dev/hid0"))
    hid1 = identity_hex(sensor_identity("/dev/hid1"))
    assert hid0 != hid1
    assert values == {
        f"meter_{hid0}_temperature_celsius": 21.5,
        f"meter_{hid0}_co2_ppm": 650.0,
        f"meter_{hid1}_temperature_celsius": 22.0,
        f"meter_{hid1}_co2_ppm": 700.0,
    }


def test_metrics_before_first_read_has_no_samples(two_meter_runtime: ExporterRuntime) -> None:
    client = TestClient(create_app(two_meter_runtime))

    assert _scraped_values(client) == {}

    sensors = client.get("/sensors").json()
    assert [sensor["path"] for sensor in sensors] == ["/dev/hid0", "/dev/hid1"]
    assert all(sensor["reading"] is None for sensor in sensors)


def test_lifespan_runs_sampling_loop() -> None:
    transport = MockTransport(paths=["/dev/hid0"], interval=0.01)
    runtime = build_runtime(transport)

    with TestClient(create_app(runtime)) as client:
        _wait_for(lambda: runtime.sampler.cycles >= 1)
        sensors = client.get("/sensors").json()
        health = client.get("/health")

    assert sensors[0]["sensor_id"] == identity_hex(sensor_identity("/dev/hid0"))
    assert sensors[0]["reading"] is not None
    assert set(sensors[0]["metrics"]) == {
        f"meter_{sensors[0]['sensor_id']}_temperature_celsius",
        f"meter_{sensors[0]['sensor_id']}_co2_ppm",
    }
    assert health.status_code == 200
    assert health.json()["sensor_count"] == 1
    assert transport.opened["/dev/hid0"].closed is True


def test_no_meters_still_serves_endpoint() -> None:
    runtime = build_runtime(MockTransport())

    with TestClient(create_app(runtime)) as client:
        metrics = client.get("/metrics")
        health = client.get("/health")
        root = client.get("/")

    assert metrics.status_code == 200
    assert "meter_" not in metrics.text
    assert health.json() == {"status": "ok", "sensor_count": 0, "cycles": 0}
    assert root.json()["status"] == "ok"


def test_read_failure_marks_service_unhealthy() -> None:
    transport = MockTransport(
        paths=["/dev/hid0", "/dev/hid1"],
        scripts={
            "/dev/hid0": [Reading(21.5, 650)],
            "/dev/hid1": [Reading(22.0, 700), DeviceReadError("/dev/hid1", "device disconnected")],
        },
    )
    runtime = build_runtime(transport)
    failed = threading.Event()

    with TestClient(create_app(runtime, on_failure=lambda _f: failed.set())) as client:
        assert failed.wait(timeout=5)
        reads_at_failure = transport.opened["/dev/hid0"].reads
        health = client.get("/health")
        scraped = _scraped_values(client)
        time.sleep(0.05)

    assert health.status_code == 503
    assert "device disconnected" in health.json()["detail"]
    assert "/dev/hid1" in health.json()["detail"]
    assert transport.opened["/dev/hid0"].reads == reads_at_failure == 2
    assert scraped == {}


def test_default_app_terminates_after_read_failure(monkeypatch) -> None:
    transport = MockTransport(
        paths=["/dev/hid0", "/dev/hid1"],
        scripts={
            "/dev/hid0": [Reading(21.5, 650)],
            "/dev/hid1": [Reading(22.0, 700), DeviceReadError("/dev/hid1", "device disconnected")],
        },
    )
    runtime = build_runtime(transport)
    signals: list[tuple[int, int]] = []
    killed = threading.Event()

    def fake_kill(pid: int, signum: int) -> None:
        signals.append((pid, signum))
        killed.set()

    monkeypatch.setattr("app.main.os.kill", fake_kill)

    with TestClient(create_app(runtime)) as client:
        assert killed.wait(timeout=5)
        scraped = _scraped_values(client)

    assert signals == [(os.getpid(), signal.SIGTERM)]
    assert runtime.sampler.failure is not None
    assert runtime.sampler.failure.device_path == "/dev/hid1"
    assert scraped == {}


def test_default_runtime_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("METER_TRANSPORT", "mock")
    monkeypatch.setenv("MOCK_METER_PATHS", "/dev/hid0, /dev/hid1")
    monkeypatch.setenv("MOCK_METER_INTERVAL", "0.01")
    monkeypatch.setenv("METRIC_PREFIX", "lab")
    caches = (get_settings, build_default_transport, build_default_runtime)
    for cache in caches:
        cache.cache_clear()

    try:
        app = create_app()
        with TestClient(app) as client:
            sensors = client.get("/sensors").json()
        assert app.state.runtime is None
    finally:
        for cache in caches:
            cache.cache_clear()

    assert [sensor["path"] for sensor in sensors] == ["/dev/hid0", "/dev/hid1"]
    assert sensors[0]["metrics"][0].startswith("lab_")
