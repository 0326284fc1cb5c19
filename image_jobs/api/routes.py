from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse

from image_jobs.api.responses import success
from image_jobs.dependencies import get_services, rate_limit
from image_jobs.models import ImmediateResult, RateLimitCategory, TransformRequest
from image_jobs.schemas import ArchiveRequest
from image_jobs.services.archive import ARCHIVE_DOWNLOAD_NAME
from image_jobs.services.container import ServiceContainer
from image_jobs.services.errors import (
    ArchiveError,
    JobNotFoundError,
    QueueUnavailableError,
    TransformFailedError,
    UploadTooLargeError,
)
from image_jobs.services.transforms import archive_download_url
from image_processing import (
    CompressParams,
    ConvertParams,
    CropParams,
    ImageProcessingError,
    Operation,
    OperationParams,
    ResizeParams,
)

images_router = APIRouter(prefix="/images", tags=["images"])

_QUEUED_MESSAGES = {
    Operation.COMPRESS: "Image compression job queued",
    Operation.RESIZE: "Image resize job queued",
    Operation.CONVERT: "Image conversion job queued",
    Operation.CROP: "Image crop job queued",
}

_process_limit = Depends(rate_limit(RateLimitCategory.IMAGE_PROCESSING))
_batch_limit = Depends(rate_limit(RateLimitCategory.BATCH_OPERATION))
_api_limit = Depends(rate_limit(RateLimitCategory.API))


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _build_params(operation: Operation, **values: Any) -> OperationParams:
    try:
        if operation is Operation.COMPRESS:
            return CompressParams(**values)
        if operation is Operation.RESIZE:
            return ResizeParams(**values)
        if operation is Operation.CONVERT:
            return ConvertParams(**values)
        return CropParams(**values)
    except ImageProcessingError as exc:
        raise _bad_request(exc)


async def _submit(
    services: ServiceContainer,
    operation: Operation,
    image: UploadFile,
    params: OperationParams,
    webhook_url: Optional[str],
) -> JSONResponse:
    try:
        stored = await services.uploads.save(image)
    except UploadTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc))
    except ImageProcessingError as exc:
        raise _bad_request(exc)

    request = TransformRequest(
        operation=operation,
        input_path=stored.path,
        original_filename=stored.original_filename,
        original_size=stored.size,
        params=params,
        webhook_url=webhook_url or None,
    )
    try:
        outcome = await services.dispatcher.submit(request)
    except ImageProcessingError as exc:
        raise _bad_request(exc)
    except TransformFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": exc.label, "error": str(exc)},
        )

    if isinstance(outcome, ImmediateResult):
        return JSONResponse(status_code=status.HTTP_200_OK, content=success(outcome.to_dict()))
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"status": "processing", "message": _QUEUED_MESSAGES[operation], "data": outcome.to_dict()},
    )


@images_router.get("/status/{job_id}", name="get_job_status", dependencies=[_api_limit])
async def get_job_status(
    job_id: str,
    operation_type: str = Query(..., alias="type"),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    try:
        operation = Operation.parse(operation_type)
    except ImageProcessingError as exc:
        raise _bad_request(exc)

    try:
        job_status = await services.status_service.get_status(job_id, operation)
    except QueueUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return success(job_status.to_dict())


@images_router.post("/compress", name="compress_image", dependencies=[_process_limit])
async def compress_image(
    image: UploadFile = File(...),
    quality: int = Form(80),
    webhook_url: Optional[str] = Form(None, alias="webhookUrl"),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    params = _build_params(Operation.COMPRESS, quality=quality)
    return await _submit(services, Operation.COMPRESS, image, params, webhook_url)


@images_router.post("/resize", name="resize_image", dependencies=[_process_limit])
async def resize_image(
    image: UploadFile = File(...),
    width: Optional[int] = Form(None),
    height: Optional[int] = Form(None),
    fit: str = Form("cover"),
    webhook_url: Optional[str] = Form(None, alias="webhookUrl"),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    params = _build_params(Operation.RESIZE, width=width, height=height, fit=fit)
    return await _submit(services, Operation.RESIZE, image, params, webhook_url)


@images_router.post("/convert", name="convert_image", dependencies=[_process_limit])
async def convert_image(
    image: UploadFile = File(...),
    target_format: str = Form("jpeg", alias="format"),
    webhook_url: Optional[str] = Form(None, alias="webhookUrl"),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    params = _build_params(Operation.CONVERT, format=target_format)
    return await _submit(services, Operation.CONVERT, image, params, webhook_url)


@images_router.post("/crop", name="crop_image", dependencies=[_process_limit])
async def crop_image(
    image: UploadFile = File(...),
    left: Optional[int] = Form(None),
    top: Optional[int] = Form(None),
    width: Optional[int] = Form(None),
    height: Optional[int] = Form(None),
    webhook_url: Optional[str] = Form(None, alias="webhookUrl"),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    if None in (left, top, width, height):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Crop coordinates (left, top, width, height) are required",
        )
    params = _build_params(Operation.CROP, left=left, top=top, width=width, height=height)
    return await _submit(services, Operation.CROP, image, params, webhook_url)


@images_router.get("/download/{filename}", response_class=FileResponse, name="download_image", dependencies=[_api_limit])
async def download_image(
    filename: str,
    original_filename: Optional[str] = Query(None, alias="originalFilename"),
    services: ServiceContainer = Depends(get_services),
) -> FileResponse:
    path = services.archive_builder.resolve_processed(filename)
    if path.name != filename or not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse(
        path,
        media_type="application/octet-stream",
        filename=Path(original_filename).name if original_filename else filename,
    )


@images_router.post("/archive", name="create_archive", dependencies=[_batch_limit])
async def create_archive(
    payload: ArchiveRequest,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    if not payload.files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided for archive")

    entries = [(item.filename, item.original_name or item.filename) for item in payload.files]
    try:
        archive = await services.archive_builder.build_archive(entries)
    except ArchiveError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return success(
        {
            "filename": archive.filename,
            "size": archive.size,
            "downloadUrl": archive_download_url(services.settings.api_prefix, archive.filename),
        }
    )


@images_router.get(
    "/download-archive/{filename}",
    response_class=FileResponse,
    name="download_archive",
    dependencies=[_api_limit],
)
async def download_archive(filename: str, services: ServiceContainer = Depends(get_services)) -> FileResponse:
    path = services.archive_builder.resolve_archive(filename)
    if path.name != filename or not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Archive not found")
    return FileResponse(path, media_type="application/zip", filename=ARCHIVE_DOWNLOAD_NAME)
