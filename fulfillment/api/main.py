"""
Fulfillment API - Main Application.

FastAPI application exposing delivery checks and the checkout stock
lifecycle. Run with:

    uvicorn fulfillment.api.main:app --reload
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fulfillment.api import __version__
from fulfillment.api.container import ServiceContainer, build_container
from fulfillment.api.models import ErrorResponse
from fulfillment.config import Settings
from fulfillment.domain.errors import (
    TransientStorageError,
    UnknownCheckoutError,
    UnknownReservationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
        return _error(400, "; ".join(problems) or "Invalid request")

    @app.exception_handler(UnknownCheckoutError)
    async def _unknown_checkout(request: Request, exc: UnknownCheckoutError):
        return _error(404, str(exc))

    @app.exception_handler(UnknownReservationError)
    async def _unknown_reservation(request: Request, exc: UnknownReservationError):
        return _error(404, str(exc))

    @app.exception_handler(TransientStorageError)
    async def _storage_error(request: Request, exc: TransientStorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return _error(503, "Storage temporarily unavailable, please retry")


def create_app(
    container: Optional[ServiceContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    With no container, one is built from Settings.from_env() when the app
    starts, so importing this module does not need any credentials.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.container is None:
            app.state.container = build_container(settings or Settings.from_env())
        active: ServiceContainer = app.state.container

        logging.basicConfig(
            level=active.settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        sweepers = []
        if active.settings.cache_sweep_interval_seconds > 0:
            sweepers.append(asyncio.create_task(
                active.cache.run_sweeper(active.settings.cache_sweep_interval_seconds)
            ))
        if active.settings.checkout_sweep_interval_seconds > 0:
            sweepers.append(asyncio.create_task(
                active.orchestrator.run_sweeper(
                    active.settings.checkout_sweep_interval_seconds,
                    timedelta(seconds=active.settings.reservation_max_age_seconds),
                )
            ))
        logger.info("Fulfillment API %s started (%s storage)", __version__, active.settings.storage_backend)
        try:
            yield
        finally:
            for sweeper in sweepers:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(
        title="Fulfillment API",
        description="Warehouse-aware delivery checks and checkout stock reservation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.container = container

    # TODO: Restrict origins once the storefront domains are known
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status, version and delivery cache statistics.
        """
        active = app.state.container
        return {
            "status": "healthy",
            "version": __version__,
            "service": "fulfillment-api",
            "cache": active.cache.stats() if active is not None else None,
        }

    @app.get("/", tags=["Root"])
    def root():
        """
        Root endpoint with API information.
        """
        return {
            "message": "Fulfillment API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health"
        }

    from fulfillment.api.routers import checkout, delivery, stock

    app.include_router(delivery.router, prefix="/api/v1", tags=["Delivery"])
    app.include_router(checkout.router, prefix="/api/v1", tags=["Checkout"])
    app.include_router(stock.router, prefix="/api/v1", tags=["Stock"])

    return app


app = create_app()
