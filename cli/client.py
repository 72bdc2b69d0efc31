from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
import typer
from prometheus_client.parser import text_string_to_metric_families

from cli.config import CLIConfig

_METER_METRIC = re.compile(
    r"^(?P<prefix>[a-zA-Z_:][a-zA-Z0-9_:]*?)_(?P<sensor_id>[0-9a-f]{40})_"
    r"(?P<quantity>temperature_celsius|co2_ppm)$"
)


@dataclass
class MeterSample:
    sensor_id: str
    temperature: Optional[float] = None
    co2: Optional[float] = None


def parse_meter_samples(text: str) -> List[MeterSample]:
    """Group meter gauges from an exposition payload by sensor identity."""
    samples: Dict[str, MeterSample] = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            match = _METER_METRIC.match(sample.name)
            if match is None:
                continue
            entry = samples.setdefault(
                match["sensor_id"], MeterSample(sensor_id=match["sensor_id"])
            )
            if match["quantity"] == "temperature_celsius":
                entry.temperature = sample.value
            else:
                entry.co2 = sample.value
    return list(samples.values())


class MetricsClient:
    """Minimal HTTP client for a running exporter."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def fetch_metrics(self) -> str:
        try:
            response = self._client.get("/metrics")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._fail(f"Request failed with status {exc.response.status_code}.")
        except httpx.TransportError as exc:
            self._fail(f"Could not reach exporter at {self._config.base_url}: {exc}")
        return response.text

    def fetch_samples(self) -> List[MeterSample]:
        return parse_meter_samples(self.fetch_metrics())

    @staticmethod
    def _fail(message: str) -> None:
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
