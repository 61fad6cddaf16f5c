"""
FastAPI application factory.

* Registers routes for rides, negotiation, driver presence, wallets and admin.
* Starts / stops the background presence sweeper via lifespan events.
* Maps ``DomainError`` to ``{"kind", "code", "detail", ...}`` JSON bodies.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridehail.api.middleware import limiter
from ridehail.api.routes import accounts, admin, drivers, negotiation, rides
from ridehail.config import settings
from ridehail.domain.errors import DomainError
from ridehail.infrastructure.database import async_session_factory
from ridehail.infrastructure.redis_client import close_redis, get_redis
from ridehail.services.container import Services, build_services
from ridehail.workers import presence_sweeper as _sweeper

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services if none were injected, then run the presence sweeper."""
    owns_redis = app.state.services is None
    if owns_redis:
        app.state.services = build_services(
            settings, async_session_factory, redis=await get_redis()
        )
    services: Services = app.state.services
    await _sweeper.start_sweeper_loop(
        services.presence, services.settings.presence_sweep_interval_seconds
    )
    yield
    await _sweeper.stop_sweeper_loop()
    if owns_redis:
        await close_redis()


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="Ride Hailing Dispatch API",
        description=(
            "Ride lifecycle, race-safe driver dispatch, in-ride price "
            "negotiation and wallet settlement backed by a double-entry "
            "ledger."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(DomainError, domain_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(negotiation.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(accounts.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
