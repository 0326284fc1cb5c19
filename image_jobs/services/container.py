from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from image_jobs.core.config import Settings
from image_jobs.services.archive import ArchiveBuilder
from image_jobs.services.cleanup import CleanupScheduler, RetentionCleanupEngine
from image_jobs.services.dispatcher import DirectExecutor, JobDispatcher, QueuedExecutor
from image_jobs.services.job_status import JobStatusService
from image_jobs.services.queue_backend import JobQueue, QueueAvailabilityDetector, RQJobQueue
from image_jobs.services.rate_limiter import RateLimiterFactory
from image_jobs.services.settings_store import JsonSettingsStore, SettingsCache, SettingsProvider
from image_jobs.services.uploads import UploadStore
from image_processing import ImageTransformService


@dataclass
class ServiceContainer:
    """Every stateful collaborator of the API, constructed once per application."""

    settings: Settings
    settings_cache: SettingsCache
    detector: QueueAvailabilityDetector
    dispatcher: JobDispatcher
    status_service: JobStatusService
    rate_limiters: RateLimiterFactory
    cleanup_engine: RetentionCleanupEngine
    cleanup_scheduler: CleanupScheduler
    archive_builder: ArchiveBuilder
    uploads: UploadStore

    @classmethod
    def build(
        cls,
        settings: Settings,
        provider: Optional[SettingsProvider] = None,
        job_queue: Optional[JobQueue] = None,
        probe: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> "ServiceContainer":
        settings.ensure_directories()
        settings_cache = SettingsCache(
            provider or JsonSettingsStore(settings.settings_file),
            fallback=settings.fallback_snapshot(),
            cache_seconds=settings.settings_cache_seconds,
        )
        detector = QueueAvailabilityDetector(
            settings.redis_url,
            check_interval=settings.queue_check_interval_seconds,
            probe_timeout=settings.queue_probe_timeout_seconds,
            enabled=settings.queue_enabled,
            probe=probe,
        )
        if job_queue is None and settings.queue_enabled:
            job_queue = RQJobQueue(
                settings.redis_url,
                job_timeout=settings.job_timeout_seconds,
                retry_attempts=settings.job_retry_attempts,
                result_ttl=settings.job_result_ttl_seconds,
                failure_ttl=settings.job_failure_ttl_seconds,
            )

        direct = DirectExecutor(ImageTransformService(settings.processed_dir), api_prefix=settings.api_prefix)
        queued = QueuedExecutor(job_queue, api_prefix=settings.api_prefix) if job_queue is not None else None
        cleanup_engine = RetentionCleanupEngine(
            settings_cache,
            processed_dir=settings.processed_dir,
            archives_dir=settings.archives_dir,
            uploads_dir=settings.uploads_dir,
            grace_seconds=settings.cleanup_grace_seconds,
        )
        return cls(
            settings=settings,
            settings_cache=settings_cache,
            detector=detector,
            dispatcher=JobDispatcher(detector, direct, queued),
            status_service=JobStatusService(detector, job_queue),
            rate_limiters=RateLimiterFactory(settings_cache, max_instances=settings.max_cached_limiters),
            cleanup_engine=cleanup_engine,
            cleanup_scheduler=CleanupScheduler(cleanup_engine, settings_cache),
            archive_builder=ArchiveBuilder(settings.processed_dir, settings.archives_dir),
            uploads=UploadStore(settings.uploads_dir, settings_cache),
        )
