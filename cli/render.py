from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

import typer

from cli.client import MeterSample
from models.records import SensorDescriptor
from services.identity import identity_hex, sensor_identity


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format(value: Optional[float], unit: str) -> str:
    return "n/a" if value is None else f"{value:g} {unit}"


def render_descriptors(descriptors: Sequence[SensorDescriptor]) -> None:
    echo_heading("Meters")
    if not descriptors:
        typer.echo("No meters found.")
        return
    for descriptor in descriptors:
        typer.echo()
        echo_key_values(
            [
                ("path", descriptor.path),
                ("serial", descriptor.serial or "n/a"),
                ("sensor_id", identity_hex(sensor_identity(descriptor.path))),
            ]
        )


def render_samples(samples: Sequence[MeterSample]) -> None:
    echo_heading("Readings")
    if not samples:
        typer.echo("No meter readings published.")
        return
    for sample in samples:
        typer.echo(
            f"  - {sample.sensor_id}: {_format(sample.temperature, 'C')}, "
            f"{_format(sample.co2, 'ppm')}"
        )
