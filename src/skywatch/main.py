from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from skywatch import __version__
from skywatch.alerts import AlertAggregator
from skywatch.api import router, skywatch_error_handler
from skywatch.cache import ResponseCache
from skywatch.config import SessionPreferences, Settings
from skywatch.errors import SkywatchError
from skywatch.forecast import ForecastFetcher
from skywatch.geocode import GeocodeResolver
from skywatch.http import build_client
from skywatch.location import IpLocator, LocationAcquisition
from skywatch.logs import setup_logging
from skywatch.orchestrator import WeatherOrchestrator

logger = structlog.get_logger("Main")


def create_app(settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """
    Build the HTTP boundary. Providers share one client created on startup;
    a missing alert identification string aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cfg = settings or Settings()
        client = build_client(cfg, transport=transport)
        try:
            resolver = GeocodeResolver(client, cfg)
            app.state.settings = cfg
            app.state.resolver = resolver
            app.state.preferences = SessionPreferences.load(cfg.preferences_path)
            app.state.acquisition = LocationAcquisition(cfg, resolver, ip_locator=IpLocator(client, cfg))
            app.state.orchestrator = WeatherOrchestrator(
                forecast=ForecastFetcher(client, cfg),
                alerts=AlertAggregator(client, cfg),
                resolver=resolver,
                cache=ResponseCache(ttl=cfg.cache_ttl),
            )
            logger.info("Skywatch started", version=__version__, cache_ttl=cfg.cache_ttl)
            yield
        finally:
            await client.aclose()
            logger.info("Skywatch stopped")

    app = FastAPI(title="Skywatch", version=__version__, lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(SkywatchError, skywatch_error_handler)
    return app


# For `uvicorn skywatch.main:app`; settings are read when the lifespan starts
app = create_app()


def run() -> None:
    settings = Settings()
    setup_logging(settings.log_level, settings.log_dir)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
