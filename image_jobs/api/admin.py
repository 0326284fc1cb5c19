from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from image_jobs.api.responses import success
from image_jobs.dependencies import get_services, require_admin
from image_jobs.models import RateLimitCategory
from image_jobs.schemas import SettingsUpdate
from image_jobs.services.container import ServiceContainer
from image_jobs.services.errors import SettingsProviderError

admin_router = APIRouter(prefix="/admin", tags=["admin"])

_RATE_LIMIT_KEYS = {
    RateLimitCategory.IMAGE_PROCESSING: "imageProcessing",
    RateLimitCategory.BATCH_OPERATION: "batchOperation",
    RateLimitCategory.API: "api",
}


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts)


@admin_router.get("/settings/rate-limits", name="get_rate_limit_settings")
async def get_rate_limit_settings(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    limits = {}
    for category, key in _RATE_LIMIT_KEYS.items():
        rule = await services.settings_cache.get_rate_limit(category)
        limits[key] = rule.to_dict()
    return success(limits)


@admin_router.get("/settings/file-upload", name="get_file_upload_settings")
async def get_file_upload_settings(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    return success(await services.settings_cache.get_file_upload_limits())


@admin_router.get("/settings", name="get_system_settings", dependencies=[Depends(require_admin)])
async def get_system_settings(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    snapshot = await services.settings_cache.get_settings()
    return success(snapshot.to_dict())


@admin_router.put("/settings", name="update_system_settings", dependencies=[Depends(require_admin)])
async def update_system_settings(
    payload: SettingsUpdate,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    changes = payload.changes()
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No settings provided")
    try:
        updated = await services.settings_cache.update(changes)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_message(exc))
    except SettingsProviderError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    return success(updated.to_dict(), message="System settings updated")


@admin_router.post("/cleanup-images", name="cleanup_images", dependencies=[Depends(require_admin)])
async def cleanup_images(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    report = await services.cleanup_engine.run_cleanup()
    return success({"cleanup": report.to_dict()})
