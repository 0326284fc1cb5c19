from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

from redis.exceptions import RedisError

from image_jobs.models import ImmediateResult, JobHandle, TransformRequest
from image_jobs.services.errors import TransformFailedError
from image_jobs.services.queue_backend import JobQueue, QueueAvailabilityDetector
from image_jobs.services.transforms import FAILURE_LABELS, execute_transform, status_url
from image_processing import ImageTransformService, InvalidParameterError, UnsupportedImageTypeError

logger = logging.getLogger(__name__)

SubmitResult = Union[JobHandle, ImmediateResult]


class DirectExecutor:
    """Runs the transform in-process, off the event loop."""

    def __init__(self, transform_service: ImageTransformService, api_prefix: str = "/api") -> None:
        self._service = transform_service
        self._api_prefix = api_prefix

    async def run(self, request: TransformRequest) -> ImmediateResult:
        try:
            data = await asyncio.to_thread(execute_transform, self._service, request, self._api_prefix)
        except (InvalidParameterError, UnsupportedImageTypeError):
            raise
        except Exception as exc:
            label = FAILURE_LABELS[request.operation]
            logger.exception("%s for %s", label, request.original_filename)
            raise TransformFailedError(label, str(exc)) from exc
        logger.info("Processed %s directly: %s", request.operation.value, data["filename"])
        return ImmediateResult(operation=request.operation, data=data)


class QueuedExecutor:
    """Hands the request to the job queue and returns a poll handle."""

    def __init__(self, job_queue: JobQueue, api_prefix: str = "/api") -> None:
        self._queue = job_queue
        self._api_prefix = api_prefix

    async def submit(self, request: TransformRequest) -> JobHandle:
        job_id = await asyncio.to_thread(self._queue.enqueue, request)
        return JobHandle(
            job_id=job_id,
            operation=request.operation,
            status_url=status_url(self._api_prefix, job_id, request.operation),
        )


class JobDispatcher:
    def __init__(
        self,
        detector: QueueAvailabilityDetector,
        direct: DirectExecutor,
        queued: Optional[QueuedExecutor] = None,
    ) -> None:
        self._detector = detector
        self._direct = direct
        self._queued = queued

    async def submit(self, request: TransformRequest) -> SubmitResult:
        """Queue ``request`` when the broker is up, otherwise process it right away.

        Always returns either a ``JobHandle`` or an ``ImmediateResult``. A broker
        that disappears between the availability check and the enqueue call
        degrades to direct processing.
        """

        if self._queued is not None and await self._detector.is_queue_available():
            try:
                return await self._queued.submit(request)
            except RedisError as exc:
                logger.warning("Enqueue of %s failed, processing directly: %s", request.operation.value, exc)
                self._detector.refresh()
        return await self._direct.run(request)
