"""Functions executed inside the RQ worker process."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from rq import get_current_job
from rq.job import Job

from image_jobs.core.config import get_settings
from image_jobs.models import TransformRequest
from image_jobs.services.transforms import execute_transform
from image_processing import ImageTransformService

logger = logging.getLogger(__name__)


def _set_progress(job: Optional[Job], progress: int) -> None:
    if job is None:
        return
    job.meta["progress"] = progress
    job.save_meta()


def send_webhook(
    url: str,
    job_id: str,
    status: str,
    data: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    timeout: float = 10.0,
) -> bool:
    """POST the job outcome to ``url``. Delivery problems are logged, never raised."""

    payload = {
        "jobId": job_id,
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
        "error": error,
    }
    try:
        response = requests.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Webhook delivery to %s for job %s failed: %s", url, job_id, exc)
        return False
    return True


def run_transform_job(payload: Dict[str, Any]) -> Dict[str, Any]:
    settings = get_settings()
    job = get_current_job()
    job_id = job.id if job is not None else "local"
    request = TransformRequest.from_payload(payload)

    _set_progress(job, 10)
    service = ImageTransformService(settings.processed_dir)
    try:
        result = execute_transform(service, request, settings.api_prefix)
    except Exception as exc:
        logger.error("Job %s (%s) failed: %s", job_id, request.operation.value, exc)
        if job is not None:
            job.meta["error"] = str(exc)
            job.save_meta()
        # Only the final attempt notifies; earlier ones are retried by RQ.
        final_attempt = job is None or not job.retries_left
        if request.webhook_url and final_attempt:
            send_webhook(
                request.webhook_url,
                job_id,
                "failed",
                error=str(exc),
                timeout=settings.webhook_timeout_seconds,
            )
        raise

    _set_progress(job, 90)
    if request.webhook_url:
        send_webhook(
            request.webhook_url,
            job_id,
            "completed",
            data=result,
            timeout=settings.webhook_timeout_seconds,
        )
    _set_progress(job, 100)
    logger.info("Job %s (%s) completed: %s", job_id, request.operation.value, result["filename"])
    return result
