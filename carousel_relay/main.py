"""FastAPI application for Carousel Relay."""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from starlette.exceptions import HTTPException

from carousel_relay import __version__
from carousel_relay.api.routes import (
    carousel_relay_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    router,
    validation_exception_handler,
)
from carousel_relay.config import Settings, get_settings
from carousel_relay.services import Services, create_services
from carousel_relay.utils.errors import CarouselRelayError
from carousel_relay.utils.logs import configure_logging

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to get_settings())
        services: Prebuilt services, mainly for tests. Built from settings
            at startup when omitted.
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        app.state.services = services or create_services(settings)
        app.state.started_at = time.monotonic()
        app.state.services.jobs.start_reaper()
        logger.info(f"Carousel Relay {__version__} started")
        try:
            yield
        finally:
            await app.state.services.carousel.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
            await app.state.services.jobs.stop_reaper()
            logger.info("Carousel Relay stopped")

    app = FastAPI(title="Carousel Relay API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
    )

    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(CarouselRelayError, carousel_relay_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root() -> dict:
        return {"service": "tiktok-carousel-relay", "version": __version__, "docs": "/docs"}

    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run("carousel_relay.main:app", host=settings.host, port=settings.port)
