"""FastAPI application factory and lifespan for the weather ingestion service."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .errors import RateLimited, WeatherHubError
from .models.database import init_database, SessionLocal
from .services.geocoding import GeocodingClient
from .services.owm_client import OWMClient
from .services.rate_limiter import RateLimiter
from .services.scheduler import IngestPoller, IngestScheduler
from .api.router import api_router

# Configure logging for our app (uvicorn only configures its own loggers)
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(levelname)s:     %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: create tables, start/stop the ingest poller."""
    logger.info("Database: %s", settings.database_url)
    init_database()
    logger.info("Database initialized")

    poller: IngestPoller = app.state.poller
    poller_task = None
    if settings.ingest_enabled:
        poller_task = asyncio.create_task(poller.run())
        logger.info("Ingest poller started (%ds interval)", settings.ingest_interval_sec)
    else:
        logger.info("Scheduled ingestion disabled (WEATHERHUB_INGEST_ENABLED=false)")

    yield

    logger.info("Shutting down...")
    poller.stop()
    if poller_task:
        poller_task.cancel()
        try:
            await asyncio.wait_for(poller_task, timeout=settings.request_timeout + 5)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
    logger.info("Application shutdown complete")


async def _weatherhub_error_handler(request: Request, exc: WeatherHubError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="WeatherHub",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Long-lived collaborators shared by the endpoints and the poller
    limiter = RateLimiter(default_interval_minutes=settings.default_rate_limit_minutes)
    owm_client = OWMClient()
    app.state.limiter = limiter
    app.state.owm_client = owm_client
    app.state.geocoder = GeocodingClient()
    app.state.poller = IngestPoller(
        IngestScheduler(limiter, session_factory=SessionLocal, client=owm_client),
        interval=settings.ingest_interval_sec,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(WeatherHubError, _weatherhub_error_handler)

    # API routes
    app.include_router(api_router)

    return app


def run() -> None:
    import uvicorn

    uvicorn.run(create_app(), host=settings.host, port=settings.port)


# Application instance
app = create_app()

if __name__ == "__main__":
    run()
