"""Pydantic schemas for the JSON endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness of the sampling loop."""

    status: str = Field(..., description="'ok' while the sampling loop is running.")
    sensor_count: int = Field(..., ge=0)
    cycles: int = Field(..., ge=0, description="Completed read cycles over all meters.")


class ReadingPayload(BaseModel):
    temperature_celsius: float
    co2_ppm: int


class SensorInfo(BaseModel):
    """A bound meter and the gauges published for it."""

    path: str
    serial: Optional[str] = None
    sensor_id: str = Field(..., description="Hex identity used in metric names.")
    metrics: List[str] = Field(default_factory=list)
    reading: Optional[ReadingPayload] = Field(
        default=None, description="Latest reading; null before the first read."
    )
