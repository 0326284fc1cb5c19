from __future__ import annotations

import asyncio
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple
from uuid import uuid4

from image_jobs.services.errors import ArchiveError
from image_jobs.services.utils import secure_filename, unique_filename
from image_processing import OUTPUT_PREFIX

logger = logging.getLogger(__name__)

ARCHIVE_DOWNLOAD_NAME = "compressed-images.zip"


@dataclass
class ArchiveResult:
    filename: str
    path: Path
    size: int
    file_count: int


class ArchiveBuilder:
    """Bundles processed files into a zip under ``archives_dir``."""

    def __init__(self, processed_dir: Path, archives_dir: Path) -> None:
        self.processed_dir = processed_dir
        self.archives_dir = archives_dir

    def resolve_processed(self, filename: str) -> Path:
        # Only bare names inside the processed directory are accepted.
        return self.processed_dir / Path(filename).name

    async def build_archive(self, entries: Sequence[Tuple[str, str]]) -> ArchiveResult:
        """``entries`` are ``(filename, original_name)`` pairs; missing files are skipped."""

        files: List[Tuple[Path, str]] = []
        used_names: List[str] = []
        for filename, original_name in entries:
            path = self.resolve_processed(filename)
            if not path.is_file():
                logger.warning("Skipping missing file %s while building archive", filename)
                continue
            display_name = secure_filename(original_name or path.name)
            display_name = unique_filename(used_names, display_name)
            used_names.append(display_name)
            files.append((path, display_name))

        if not files:
            raise ArchiveError("No processed images available for download")

        self.archives_dir.mkdir(parents=True, exist_ok=True)
        archive_path = self.archives_dir / f"{OUTPUT_PREFIX}compressed-images-{uuid4()}.zip"
        try:
            await asyncio.to_thread(self._write_zip_archive, archive_path, files)
        except OSError as exc:
            archive_path.unlink(missing_ok=True)
            raise ArchiveError(f"Failed to create archive: {exc}") from exc

        size = archive_path.stat().st_size
        logger.info("Created archive %s with %s files (%s bytes)", archive_path.name, len(files), size)
        return ArchiveResult(filename=archive_path.name, path=archive_path, size=size, file_count=len(files))

    def resolve_archive(self, filename: str) -> Path:
        return self.archives_dir / Path(filename).name

    @staticmethod
    def _write_zip_archive(archive_path: Path, files: Iterable[Tuple[Path, str]]) -> None:
        with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            for path, name in files:
                archive.write(path, arcname=name)
