"""HTTP route definitions for the exporter."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.schemas import HealthResponse, ReadingPayload, SensorInfo
from services.exporter import ExporterRuntime

METRICS_PATH = "/metrics"

router = APIRouter()


def get_runtime(request: Request) -> ExporterRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Exporter runtime is not initialised.",
        )
    return runtime


@router.get(
    METRICS_PATH,
    summary="Prometheus scrape endpoint with the latest reading of every meter.",
    response_class=Response,
)
def metrics(runtime: ExporterRuntime = Depends(get_runtime)) -> Response:
    return Response(content=generate_latest(runtime.registry), media_type=CONTENT_TYPE_LATEST)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    responses={503: {"description": "A meter read failed and sampling has halted."}},
)
def healthcheck(runtime: ExporterRuntime = Depends(get_runtime)) -> HealthResponse:
    failure = runtime.sampler.failure
    if failure is not None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sampling halted: {failure.reason} ({failure.device_path or 'loop'})",
        )
    return HealthResponse(
        status="ok",
        sensor_count=len(runtime.bindings),
        cycles=runtime.sampler.cycles,
    )


@router.get(
    "/sensors",
    response_model=List[SensorInfo],
    summary="List bound meters with their metric names and latest reading.",
)
def list_sensors(runtime: ExporterRuntime = Depends(get_runtime)) -> List[SensorInfo]:
    sensors: List[SensorInfo] = []
    for binding in runtime.bindings:
        reading = binding.reading
        sensors.append(
            SensorInfo(
                path=binding.descriptor.path,
                serial=binding.descriptor.serial,
                sensor_id=binding.sensor_id,
                metrics=[binding.temperature_name, binding.co2_name],
                reading=None
                if reading is None
                else ReadingPayload(temperature_celsius=reading.temperature, co2_ppm=reading.co2),
            )
        )
    return sensors


@router.get(
    "/",
    summary="Root endpoint pointing at the scrape path.",
    status_code=status.HTTP_200_OK,
)
def root() -> dict[str, str]:
    return {"status": "ok", "detail": f"Metrics are served at {METRICS_PATH}."}
