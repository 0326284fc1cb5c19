from __future__ import annotations

import asyncio
import logging
from typing import Optional

from redis.exceptions import RedisError

from image_jobs.models import JobStatus
from image_jobs.services.errors import JobNotFoundError, QueueUnavailableError
from image_jobs.services.queue_backend import JobQueue, QueueAvailabilityDetector
from image_processing import Operation

logger = logging.getLogger(__name__)

LOCAL_MODE_MESSAGE = "Job status checking is not available in local processing mode"


class JobStatusService:
    def __init__(self, detector: QueueAvailabilityDetector, job_queue: Optional[JobQueue] = None) -> None:
        self._detector = detector
        self._queue = job_queue

    async def get_status(self, job_id: str, operation: Operation) -> JobStatus:
        if self._queue is None or not await self._detector.is_queue_available():
            raise QueueUnavailableError(LOCAL_MODE_MESSAGE)
        try:
            status = await asyncio.to_thread(self._queue.fetch, operation, job_id)
        except RedisError as exc:
            logger.warning("Job lookup for %s failed: %s", job_id, exc)
            self._detector.refresh()
            raise QueueUnavailableError(LOCAL_MODE_MESSAGE) from exc
        if status is None:
            raise JobNotFoundError(job_id)
        return status
