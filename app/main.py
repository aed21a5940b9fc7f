"""
Travel Booking Backend — FastAPI Application Factory
======================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers, routers and the
       BookingService instance the routes use.
Who:   uvicorn (uvicorn app.main:app) and the test suite.

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                      FastAPI App                        │
    │                                                         │
    │  Middleware Chain:                                      │
    │  ┌────────────┐ ┌────────────┐ ┌────────────┐           │
    │  │ Request ID │→│ Access Log │→│ Rate Limit │→ GZip/CORS│
    │  └────────────┘ └────────────┘ └────────────┘           │
    │                                                         │
    │  Routes:                                                │
    │  ┌──────────────┐ ┌──────────────────┐ ┌─────────────┐  │
    │  │/api/bookings │ │/api/destinations │ │ GET /health │  │
    │  └──────────────┘ └──────────────────┘ └─────────────┘  │
    │                                                         │
    │  Exception Handlers:                                    │
    │  ┌───────────────────────────────────────────────────┐  │
    │  │ TravelBookingError → its status_code │ else → 500 │  │
    │  └───────────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check, SQLite table creation
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.config import settings
from app.database import create_all, dispose_engine
from app.exceptions import (
    DatabaseError,
    RateLimitExceededError,
    StorageUnavailableError,
    TravelBookingError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, request_id_var
from app.routes import bookings, destinations, health
from app.services.booking_service import BookingService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once at startup.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party loggers are chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Travel Booking Backend starting up...")

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks still work and tokens fail loudly
        logger.error("Configuration error: %s", e)

    if settings.is_sqlite:
        await create_all()
        logger.info("SQLite schema ensured")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Travel Booking Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_body(error: str, message: str, details=None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to JSON error responses.

    Handler hierarchy:
        DatabaseError            → 500, generic message, detail logged
        StorageUnavailableError  → 503 + Retry-After
        RateLimitExceededError   → 429 + Retry-After
        TravelBookingError       → exc.status_code (400/401/403/404/409)
        RequestValidationError   → 400 validation_error, one entry per field
        Exception (fallback)     → 500, generic message, traceback logged
    """

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""), exc.message, exc.context,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                exc.error_code, "An internal error occurred. Please try again later."
            ),
        )

    @app.exception_handler(StorageUnavailableError)
    async def handle_storage_unavailable(request: Request, exc: StorageUnavailableError):
        logger.error("[%s] Storage unavailable: %s", request_id_var.get(""), exc.context)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error_code, exc.message, exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error_code, exc.message, exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(TravelBookingError)
    async def handle_booking_error(request: Request, exc: TravelBookingError):
        logger.warning(
            "[%s] %s: %s", request_id_var.get(""), exc.error_code, exc.message
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error_code, exc.message, exc.context),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {
                # loc[0] is the request part: body, query, path
                "field": ".".join(str(part) for part in error.get("loc", ())[1:]),
                "message": error.get("msg", ""),
            }
            for error in exc.errors()
        ]
        message = errors[0]["message"] if errors else "Validation failed"
        logger.warning("[%s] validation_error: %s", request_id_var.get(""), errors)
        return JSONResponse(
            status_code=ValidationError.status_code,
            content=error_body(ValidationError.error_code, message, {"errors": errors}),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s", request_id_var.get(""), exc, exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content=error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(booking_service: BookingService = None) -> FastAPI:
    """
    Build the application.

    Args:
        booking_service: Injected by tests (fixed clock, fast retries);
            defaults to one built from settings.
    """
    app = FastAPI(
        title="Travel Booking API",
        description=(
            "Destination bookings with overlap-free availability, tiered "
            "cancellation refunds and an admin-driven confirmation lifecycle."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.booking_service = booking_service or BookingService.from_settings(settings)
    # Destination routes use the same DestinationService as BookingService
    app.state.destination_service = app.state.booking_service.destinations

    # ── Middleware ────────────────────────────────────────────────────────
    # Last added runs first: Request ID → Access Log → Rate Limit → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────────────────
    app.include_router(bookings.router)
    app.include_router(destinations.router)
    app.include_router(health.router)

    return app


app = create_app()
