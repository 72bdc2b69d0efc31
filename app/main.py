from __future__ import annotations
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.exporter import ExporterRuntime, build_default_runtime
from services.sampler import FailureCallback, ReadFailure

logger = logging.getLogger(__name__)


def terminate_process(failure: ReadFailure) -> None:
    """Ask the hosting server to shut down after a failed meter read."""
    logger.critical(
        "Terminating exporter",
        extra={"device_path": failure.device_path, "reason": failure.reason},
    )
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(
    runtime: Optional[ExporterRuntime] = None,
    on_failure: Optional[FailureCallback] = None,
) -> FastAPI:
    """Build the exporter app.

    ``runtime`` is shared by reference between the scrape handler and the
    sampling loop. Without one, the default runtime is built on startup.
    ``on_failure`` is called from the sampling thread when a meter read fails;
    by default the process is sent SIGTERM.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.runtime is None
        if owned:
            app.state.runtime = build_default_runtime()
        app.state.runtime.start(on_failure or terminate_process)
        try:
            yield
        finally:
            app.state.runtime.shutdown()
            if owned:
                app.state.runtime = None
                build_default_runtime.cache_clear()

    configure_logging()
    app = FastAPI(
        title="CO2 Meter Exporter",
        description="Prometheus exporter for USB CO2 and temperature meters.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.include_router(router)
    return app

app = create_app()
