"""Shared glue between transform requests and the Pillow service.

Both the in-process executor and the queue worker go through
``execute_transform`` so a direct result and a queued job's return value have
the same shape.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, cast
from urllib.parse import quote

from image_jobs.models import TransformRequest
from image_jobs.services.utils import compression_ratio
from image_processing import ConvertParams, ImageTransformService, Operation, ProcessedImage

FAILURE_LABELS = {
    Operation.COMPRESS: "Image compression failed",
    Operation.RESIZE: "Image resize failed",
    Operation.CONVERT: "Image conversion failed",
    Operation.CROP: "Image crop failed",
}


def download_url(api_prefix: str, filename: str, original_filename: str) -> str:
    return f"{api_prefix}/images/download/{quote(filename)}?originalFilename={quote(original_filename)}"


def archive_download_url(api_prefix: str, filename: str) -> str:
    return f"{api_prefix}/images/download-archive/{quote(filename)}"


def status_url(api_prefix: str, job_id: str, operation: Operation) -> str:
    return f"{api_prefix}/images/status/{quote(job_id)}?type={operation.value}"


def build_result(request: TransformRequest, processed: ProcessedImage, api_prefix: str) -> Dict[str, Any]:
    filename = processed.path.name
    original_filename = request.original_filename
    data: Dict[str, Any] = {
        "mime": processed.mime,
        "filename": filename,
        "originalFilename": original_filename,
        "width": processed.width,
        "height": processed.height,
    }

    if request.operation is Operation.COMPRESS:
        data.update(
            originalSize=request.original_size,
            compressedSize=processed.size,
            compressionRatio=compression_ratio(request.original_size, processed.size),
        )
    elif request.operation is Operation.CONVERT:
        target = cast(ConvertParams, request.params).format
        data.update(
            originalFormat=Path(original_filename).suffix.lstrip(".").lower(),
            convertedFormat=target,
        )
        original_filename = f"{Path(original_filename).stem}.{target}"
    else:
        data["size"] = processed.size

    data["downloadUrl"] = download_url(api_prefix, filename, original_filename)
    return data


def execute_transform(service: ImageTransformService, request: TransformRequest, api_prefix: str) -> Dict[str, Any]:
    """Run the transform synchronously. Blocks; call it from a worker thread or process."""

    processed = service.apply(request.operation, request.input_path, request.params)
    return build_result(request, processed, api_prefix)
