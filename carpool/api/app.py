"""
FastAPI application factory.

* Registers routes for rides, bookings, fares, users and admin.
* Starts / stops the background penalty sweeper via lifespan events.
* Maps booking-core errors to HTTP responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from carpool.api.middleware import limiter
from carpool.api.routes import admin, bookings, fares, rides, users
from carpool.domain.exceptions import (
    CarpoolError,
    Conflict,
    InvalidInput,
    NotFound,
    RestrictedByPenalty,
)
from carpool.infrastructure import redis_client
from carpool.workers import penalty_sweeper as _sweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Kinds not listed here are state/capacity violations -> 409
ERROR_STATUS = {
    NotFound: 404,
    InvalidInput: 422,
    RestrictedByPenalty: 403,
    Conflict: 503,
}


def status_for(exc: CarpoolError) -> int:
    for cls, status in ERROR_STATUS.items():
        if isinstance(exc, cls):
            return status
    return 409


async def carpool_error_handler(request: Request, exc: CarpoolError) -> JSONResponse:
    status = status_for(exc)
    if status == 503:
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status, content={"detail": str(exc), "error": exc.kind}
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the penalty sweeper on startup; stop it and close Redis on shutdown."""
    await _sweeper.start_penalty_sweeper()
    yield
    await _sweeper.stop_penalty_sweeper()
    await redis_client.close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Campus Carpool Booking API",
        description=(
            "Matches student passengers with driver ride offers, prices "
            "seats, and manages booking requests with safe concurrent "
            "seat accounting and time-boxed penalties."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(CarpoolError, carpool_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(fares.router, prefix="/api/v1")
    app.include_router(users.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
