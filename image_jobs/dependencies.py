from __future__ import annotations

import secrets
from typing import Awaitable, Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from image_jobs.models import RateLimitCategory
from image_jobs.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    services: Optional[ServiceContainer] = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limit(category: RateLimitCategory) -> Callable[..., Awaitable[None]]:
    """Route dependency counting the caller against ``category``'s current limit."""

    async def dependency(request: Request, services: ServiceContainer = Depends(get_services)) -> None:
        if not services.settings.rate_limiting_enabled:
            return
        limiter = await services.rate_limiters.get_limiter(category)
        limiter.hit(client_key(request))

    return dependency


async def require_admin(
    services: ServiceContainer = Depends(get_services),
    x_admin_token: Optional[str] = Header(default=None),
) -> None:
    expected = services.settings.admin_token
    if expected is None:
        return
    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin access required")
