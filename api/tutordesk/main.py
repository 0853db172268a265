from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from tutordesk.api.router import api_router
from tutordesk.core.config import get_settings
from tutordesk.core.telemetry import (
    TelemetryRuntime,
    configure_api_logging,
    setup_api_telemetry,
    shutdown_api_telemetry,
)
from tutordesk.services.realtime import PostgresChangeListener, get_realtime_hub
from tutordesk.services.repository import RepositoryUnavailableError, get_repository

settings = get_settings()
configure_api_logging()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    runtime_settings = get_settings()
    listener: PostgresChangeListener | None = None
    if runtime_settings.database_url and runtime_settings.realtime_enabled:
        listener = PostgresChangeListener(
            get_repository(),
            get_realtime_hub(),
            runtime_settings.realtime_channel,
            reconnect_initial_seconds=runtime_settings.realtime_reconnect_initial_seconds,
            reconnect_max_seconds=runtime_settings.realtime_reconnect_max_seconds,
        )
        try:
            await listener.start()
        except RepositoryUnavailableError:
            logger.warning("realtime listener disabled; database unreachable", exc_info=True)
            listener = None

    try:
        yield
    finally:
        if listener is not None:
            await listener.stop()
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        # Ensure asyncpg pool shuts down on app teardown.
        await get_repository().close()
        get_repository.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
