from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile

from image_jobs.services.errors import UploadTooLargeError
from image_jobs.services.settings_store import SettingsCache
from image_jobs.services.utils import format_size
from image_processing import ImageProcessingError
from image_processing.utils import ALLOWED_EXTENSIONS, validate_dimensions, validate_mime_type

logger = logging.getLogger(__name__)


@dataclass
class StoredUpload:
    path: Path
    original_filename: str
    size: int
    mime: str
    width: int
    height: int


class UploadStore:
    """Validates an uploaded image and stores it as ``<uploads>/<uuid><ext>``."""

    def __init__(self, uploads_dir: Path, settings_cache: SettingsCache) -> None:
        self.uploads_dir = uploads_dir
        self._settings_cache = settings_cache

    @staticmethod
    def _extension_for(filename: str, mime: str) -> str:
        suffix = Path(filename).suffix.lower()
        if suffix in ALLOWED_EXTENSIONS:
            return suffix
        return mimetypes.guess_extension(mime) or ".img"

    async def save(self, upload: UploadFile) -> StoredUpload:
        mime = validate_mime_type(upload.content_type)
        limits = await self._settings_cache.get_file_upload_limits()
        contents = await upload.read()
        await upload.close()
        if len(contents) > limits["maxFileSize"]:
            raise UploadTooLargeError(f"File too large. Maximum size is {format_size(limits['maxFileSize'])}")

        original_filename = upload.filename or "upload"
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        destination = self.uploads_dir / f"{uuid4()}{self._extension_for(original_filename, mime)}"
        await asyncio.to_thread(destination.write_bytes, contents)

        try:
            width, height = await asyncio.to_thread(validate_dimensions, destination)
        except ImageProcessingError:
            destination.unlink(missing_ok=True)
            raise

        logger.debug("Stored upload %s as %s (%s bytes)", original_filename, destination.name, len(contents))
        return StoredUpload(
            path=destination,
            original_filename=original_filename,
            size=len(contents),
            mime=mime,
            width=width,
            height=height,
        )
