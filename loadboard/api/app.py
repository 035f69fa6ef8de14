"""
FastAPI application factory.

* Registers routes for loads, requests, trips, fleet postings and admin.
* Starts / stops the background notification worker via lifespan events.
* Renders every ``DomainError`` as ``{"detail", "rule"?, "details"?}``.
* Renders malformed bodies and parameters as 400 ``ValidationFailed``.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from loadboard.api.routes import admin, loads, postings, requests, trips
from loadboard.domain.errors import DomainError, ValidationFailed
from loadboard.infrastructure.redis_client import close_redis
from loadboard.workers import notifier as _notifier

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the notification worker on startup; stop on shutdown."""
    await _notifier.start_notification_loop()
    yield
    await _notifier.stop_notification_loop()
    await close_redis()


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    body = {"detail": exc.message}
    if exc.rule:
        body["rule"] = exc.rule
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = {}
    for error in exc.errors():
        loc = [str(part) for part in error["loc"]]
        if loc and loc[0] in ("body", "query", "path"):
            loc = loc[1:]
        details[".".join(loc) or "body"] = error["msg"]
    return await domain_error_handler(
        request, ValidationFailed("Invalid request data", details=details)
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Load Board Workflow API",
        description=(
            "Freight marketplace core: load and trip lifecycles, load and "
            "truck requests with atomic approval, proof of delivery and "
            "settlement on completion."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Routers
    app.include_router(loads.router, prefix="/api/v1")
    app.include_router(requests.router, prefix="/api/v1")
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(postings.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
