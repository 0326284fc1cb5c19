from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from redis import Redis
from redis.asyncio import Redis as AsyncRedis
from rq import Queue, Retry
from rq.exceptions import NoSuchJobError
from rq.job import Job
from rq.job import JobStatus as RQJobStatus

from image_jobs.models import QUEUE_NAMES, JobState, JobStatus, TransformRequest
from image_jobs.services.tasks import run_transform_job
from image_processing import Operation

logger = logging.getLogger(__name__)

_STATE_MAP = {
    RQJobStatus.QUEUED: JobState.QUEUED,
    RQJobStatus.DEFERRED: JobState.QUEUED,
    RQJobStatus.SCHEDULED: JobState.QUEUED,
    RQJobStatus.STARTED: JobState.ACTIVE,
    RQJobStatus.FINISHED: JobState.COMPLETED,
    RQJobStatus.FAILED: JobState.FAILED,
    RQJobStatus.STOPPED: JobState.FAILED,
    RQJobStatus.CANCELED: JobState.FAILED,
}


class QueueAvailabilityDetector:
    """Answers "is the broker reachable?" with a short-lived cached ping result."""

    def __init__(
        self,
        redis_url: str,
        check_interval: float = 5.0,
        probe_timeout: float = 3.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        probe: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> None:
        self._redis_url = redis_url
        self._check_interval = check_interval
        self._probe_timeout = probe_timeout
        self._enabled = enabled
        self._clock = clock
        self._probe = probe or self._ping
        self._available: Optional[bool] = None
        self._checked_at: Optional[float] = None

    async def is_queue_available(self) -> bool:
        if not self._enabled:
            return False
        now = self._clock()
        if self._available is not None and self._checked_at is not None:
            if now - self._checked_at < self._check_interval:
                return self._available

        try:
            available = bool(await self._probe())
        except Exception as exc:
            available = False
            if self._available is not False:
                logger.warning("Queue broker unreachable, falling back to direct processing: %s", exc)

        if available != self._available:
            logger.info("Queue broker status: %s", "AVAILABLE" if available else "UNAVAILABLE")
        self._available = available
        self._checked_at = self._clock()
        return available

    def refresh(self) -> None:
        self._checked_at = None

    async def _ping(self) -> bool:
        client = AsyncRedis.from_url(
            self._redis_url,
            socket_connect_timeout=self._probe_timeout,
            socket_timeout=self._probe_timeout,
        )
        try:
            return bool(await client.ping())
        finally:
            await client.aclose()


class JobQueue(Protocol):
    def enqueue(self, request: TransformRequest) -> str: ...

    def fetch(self, operation: Operation, job_id: str) -> Optional[JobStatus]: ...


class RQJobQueue:
    """Job queue backed by one RQ queue per operation kind. All methods block."""

    def __init__(
        self,
        redis_url: str,
        job_timeout: int = 180,
        retry_attempts: int = 1,
        result_ttl: int = 86400,
        failure_ttl: int = 86400,
        connection: Optional[Redis] = None,
    ) -> None:
        self._connection = connection or Redis.from_url(redis_url)
        self._job_timeout = job_timeout
        self._retry_attempts = retry_attempts
        self._result_ttl = result_ttl
        self._failure_ttl = failure_ttl

    def queue_for(self, operation: Operation) -> Queue:
        return Queue(QUEUE_NAMES[operation], connection=self._connection)

    def enqueue(self, request: TransformRequest) -> str:
        queue = self.queue_for(request.operation)
        job = queue.enqueue(
            run_transform_job,
            request.to_payload(),
            job_timeout=self._job_timeout,
            result_ttl=self._result_ttl,
            failure_ttl=self._failure_ttl,
            retry=Retry(max=self._retry_attempts) if self._retry_attempts else None,
            meta={"progress": 0, "operation": request.operation.value},
            description=f"{request.operation.value} {request.original_filename}",
        )
        logger.info("Queued %s job %s on %s", request.operation.value, job.id, queue.name)
        return job.id

    def fetch(self, operation: Operation, job_id: str) -> Optional[JobStatus]:
        try:
            job = Job.fetch(job_id, connection=self._connection)
        except NoSuchJobError:
            return None
        if job.origin != QUEUE_NAMES[operation]:
            return None
        return job_status_from_rq(job)


def _failure_reason(job: Any) -> Optional[str]:
    reason = (job.meta or {}).get("error")
    if reason:
        return str(reason)
    latest = job.latest_result()
    exc_string = getattr(latest, "exc_string", None) if latest is not None else None
    if not exc_string:
        return "Job failed"
    # Only the final "ExceptionType: message" line leaves the service.
    lines = [line for line in exc_string.strip().splitlines() if line.strip()]
    return lines[-1] if lines else "Job failed"


def job_status_from_rq(job: Any) -> Optional[JobStatus]:
    status = job.get_status()
    if status is None:
        return None
    state = _STATE_MAP.get(RQJobStatus(status), JobState.QUEUED)
    meta = job.meta or {}
    progress = int(meta.get("progress", 0) or 0)
    result = None
    error = None
    if state is JobState.COMPLETED:
        progress = 100
        result = job.return_value()
    elif state is JobState.FAILED:
        error = _failure_reason(job)
    return JobStatus(job_id=job.id, state=state, progress=progress, result=result, error=error)
