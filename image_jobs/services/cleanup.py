from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from image_jobs.models import RetentionPolicy
from image_jobs.services.settings_store import SettingsCache
from image_jobs.services.utils import format_size
from image_processing import OUTPUT_PREFIX

logger = logging.getLogger(__name__)

# Uploads with this prefix belong to published blog posts and are never expired.
PERMANENT_PREFIX = "blog-"


@dataclass
class DirectoryCleanupResult:
    directory: str
    deleted_count: int = 0
    total_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "directory": self.directory,
            "deletedCount": self.deleted_count,
            "totalSize": self.total_size,
            "sizeFormatted": format_size(self.total_size),
        }


@dataclass
class CleanupReport:
    processed_files: DirectoryCleanupResult
    archive_files: DirectoryCleanupResult
    uploaded_files: DirectoryCleanupResult
    enabled: bool = True

    @property
    def total_deleted(self) -> int:
        return sum(result.deleted_count for result in self._results())

    @property
    def total_bytes_recovered(self) -> int:
        return sum(result.total_size for result in self._results())

    def _results(self) -> tuple[DirectoryCleanupResult, ...]:
        return (self.processed_files, self.archive_files, self.uploaded_files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processedFiles": self.processed_files.to_dict(),
            "archiveFiles": self.archive_files.to_dict(),
            "uploadedFiles": self.uploaded_files.to_dict(),
            "totalDeleted": self.total_deleted,
            "totalBytesRecovered": self.total_bytes_recovered,
            "totalSizeRecovered": format_size(self.total_bytes_recovered),
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class CleanupTarget:
    directory: Path
    retention_hours: float
    include_prefix: Optional[str] = None
    exclude_prefix: Optional[str] = None

    def matches(self, name: str) -> bool:
        if self.include_prefix is not None and not name.startswith(self.include_prefix):
            return False
        if self.exclude_prefix is not None and name.startswith(self.exclude_prefix):
            return False
        return True


class RetentionCleanupEngine:
    """Deletes generated and uploaded files once they outlive their category's retention.

    Ages are compared in float seconds and a file is only removed when it is
    strictly older than the retention window (and the optional grace window).
    """

    def __init__(
        self,
        settings_cache: SettingsCache,
        processed_dir: Path,
        archives_dir: Path,
        uploads_dir: Path,
        grace_seconds: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings_cache = settings_cache
        self.processed_dir = processed_dir
        self.archives_dir = archives_dir
        self.uploads_dir = uploads_dir
        self._grace_seconds = grace_seconds
        self._clock = clock

    def targets(self, policy: RetentionPolicy) -> tuple[CleanupTarget, CleanupTarget, CleanupTarget]:
        return (
            CleanupTarget(self.processed_dir, policy.processed_hours, include_prefix=OUTPUT_PREFIX),
            CleanupTarget(self.archives_dir, policy.archive_hours, include_prefix=OUTPUT_PREFIX),
            CleanupTarget(self.uploads_dir, policy.temp_hours, exclude_prefix=PERMANENT_PREFIX),
        )

    async def run_cleanup(self) -> CleanupReport:
        policy = await self._settings_cache.get_retention_policy()
        if not policy.enabled:
            logger.info("Automatic cleanup is disabled, nothing removed")
            return CleanupReport(
                processed_files=DirectoryCleanupResult(str(self.processed_dir)),
                archive_files=DirectoryCleanupResult(str(self.archives_dir)),
                uploaded_files=DirectoryCleanupResult(str(self.uploads_dir)),
                enabled=False,
            )

        processed, archives, uploads = self.targets(policy)
        now = self._clock()
        report = CleanupReport(
            processed_files=await asyncio.to_thread(self.sweep, processed, now),
            archive_files=await asyncio.to_thread(self.sweep, archives, now),
            uploaded_files=await asyncio.to_thread(self.sweep, uploads, now),
        )
        logger.info(
            "Cleanup removed %s files, recovered %s",
            report.total_deleted,
            format_size(report.total_bytes_recovered),
        )
        return report

    def sweep(self, target: CleanupTarget, now: float) -> DirectoryCleanupResult:
        result = DirectoryCleanupResult(str(target.directory))
        if not target.directory.is_dir():
            logger.debug("Cleanup directory %s does not exist", target.directory)
            return result

        retention_seconds = max(target.retention_hours * 3600, self._grace_seconds)
        for entry in target.directory.iterdir():
            if not target.matches(entry.name):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
                age = now - stat.st_mtime
                if age <= retention_seconds:
                    continue
                entry.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Could not remove %s: %s", entry, exc)
                continue
            logger.debug("Removed %s (age %.0fs)", entry.name, age)
            result.deleted_count += 1
            result.total_size += stat.st_size
        return result


class CleanupScheduler:
    """Runs the cleanup engine every ``cleanupIntervalHours`` until stopped."""

    def __init__(
        self,
        engine: RetentionCleanupEngine,
        settings_cache: SettingsCache,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._settings_cache = settings_cache
        self._sleep = sleep
        self._task: Optional[asyncio.Task[None]] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._periodic_cleanup_loop())
        logger.info("Cleanup scheduler started")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Cleanup scheduler stopped")

    async def run_once(self) -> Optional[CleanupReport]:
        try:
            report = await self._engine.run_cleanup()
        except Exception:
            logger.exception("Scheduled cleanup failed")
            return None
        self.runs += 1
        return report

    async def _periodic_cleanup_loop(self) -> None:
        try:
            while True:
                snapshot = await self._settings_cache.get_settings()
                await self._sleep(snapshot.cleanup_interval_hours * 3600)
                snapshot = await self._settings_cache.get_settings()
                if not snapshot.auto_cleanup_enabled:
                    logger.debug("Automatic cleanup disabled, skipping scheduled run")
                    continue
                await self.run_once()
        except asyncio.CancelledError:
            return
