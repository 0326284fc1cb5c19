from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from image_jobs.api.admin import admin_router
from image_jobs.api.responses import error
from image_jobs.api.routes import images_router
from image_jobs.core.config import Settings, get_settings
from image_jobs.core.logging import configure_logging
from image_jobs.schemas import HealthResponse
from image_jobs.services.container import ServiceContainer
from image_jobs.services.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: ServiceContainer = app.state.services
    configure_logging(services.settings.log_level)
    services.settings.ensure_directories()
    if services.settings.cleanup_scheduler_enabled:
        services.cleanup_scheduler.start()
    try:
        yield
    finally:
        await services.cleanup_scheduler.stop()


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        body = error(**exc.detail)
    else:
        body = error(str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path"))
        messages.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error("; ".join(messages)))


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error(str(exc), retryAfter=exc.retry_after),
        headers={"Retry-After": str(exc.retry_after)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error("Internal server error"))


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    if services is None:
        services = ServiceContainer.build(settings or get_settings())
    settings = services.settings

    app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
    app.state.services = services

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceededError, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(images_router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=settings.api_prefix)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        available = await services.detector.is_queue_available()
        return HealthResponse(status="ok", queue="available" if available else "unavailable")

    return app
