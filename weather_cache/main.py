"""FastAPI application setup for the weather snapshot cache."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from weather_cache import config
from weather_cache.api import router as api_router
from weather_cache.errors import WeatherCacheError
from weather_cache.service import WeatherCacheService, build_service
from weather_cache.sweeper import ExpirySweeper, build_sweep_lock
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="main")


def create_app(
    settings: config.Settings | None = None,
    service: WeatherCacheService | None = None,
) -> FastAPI:
    """Build the app with its service and sweeper attached to ``app.state``."""
    settings = settings or config.settings
    service = service or build_service(settings)
    sweeper = ExpirySweeper(
        service.store,
        interval_seconds=settings.sweep_interval_seconds,
        lock=build_sweep_lock(settings),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.sweeper_enabled:
            sweeper.start()
        try:
            yield
        finally:
            sweeper.stop()

    app = FastAPI(title="Weather Snapshot Cache", lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.sweeper = sweeper

    @app.exception_handler(WeatherCacheError)
    async def handle_weather_cache_error(request: Request, exc: WeatherCacheError):
        """Translate domain errors to their HTTP status."""
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        body = {"error": type(exc).__name__, "detail": exc.message}
        if exc.details:
            body["context"] = jsonable_encoder(exc.details)
        return JSONResponse(status_code=exc.status_code, content=body)

    # API routes
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
