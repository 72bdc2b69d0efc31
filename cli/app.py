from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import typer
import uvicorn

from app.main import create_app
from cli.client import MetricsClient
from cli.config import CLIConfig, load_config, parse_listen_address
from cli.render import render_descriptors, render_samples
from devices.transport import build_default_transport
from logging_config import configure_logging
from services.bindings import BindingError
from services.exporter import build_runtime
from services.sampler import ReadFailure
from settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class CLIState:
    config: CLIConfig


app = typer.Typer(
    help="Prometheus exporter for USB CO2 and temperature meters.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Exporter base URL for client commands (defaults to EXPORTER_BASE_URL env or http://localhost:8080).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds for client commands.",
    ),
) -> None:
    """Entry point for the CLI."""
    ctx.obj = CLIState(config=load_config(base_url=base_url, timeout=timeout))


@app.command("serve")
def serve_command(
    listen_address: Optional[str] = typer.Argument(
        None,
        help="The address to listen on for HTTP requests (host:port, defaults to :8080).",
    ),
) -> None:
    """Bind every attached meter and serve their readings at /metrics."""
    settings = get_settings()
    configure_logging()

    address = listen_address or settings.listen_address
    try:
        host, port = parse_listen_address(address)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="LISTEN_ADDRESS") from exc

    try:
        runtime = build_runtime(build_default_transport(), prefix=settings.metric_prefix)
    except BindingError as exc:
        typer.secho(f"Startup failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    server: Optional[uvicorn.Server] = None

    def halt(_failure: ReadFailure) -> None:
        if server is not None:
            server.should_exit = True

    api = create_app(runtime, on_failure=halt)
    server = uvicorn.Server(uvicorn.Config(api, host=host, port=port, log_config=None))
    logger.info("Serving metrics", extra={"listen_address": f"{address}/metrics"})
    server.run()

    failure = runtime.sampler.failure
    if failure is not None:
        typer.secho(
            f"Failed to read meter {failure.device_path or ''}: {failure.reason}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)


@app.command("sensors")
def sensors_command() -> None:
    """List attached meters and the identity their metrics would use."""
    render_descriptors(build_default_transport().enumerate())


@app.command("scrape")
def scrape_command(ctx: typer.Context) -> None:
    """Fetch /metrics from a running exporter and show the meter readings."""
    state = _get_state(ctx)
    client = MetricsClient(state.config)
    ctx.call_on_close(client.close)
    render_samples(client.fetch_samples())
