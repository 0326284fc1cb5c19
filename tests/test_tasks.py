from __future__ import annotations

from pathlib import Path

import pytest
import requests

from image_jobs.models import TransformRequest
from image_jobs.services import tasks
from image_processing import CompressParams, ImageProcessingError, Operation


class StubJob:
    def __init__(self, retries_left: int = 0) -> None:
        self.id = "job-42"
        self.meta = {"progress": 0}
        self.retries_left = retries_left
        self.saved_progress = []

    def save_meta(self) -> None:
        self.saved_progress.append(self.meta.get("progress"))


class StubResponse:
    def raise_for_status(self) -> None:
        return None


@pytest.fixture
def worker_env(monkeypatch: pytest.MonkeyPatch, settings):
    job = StubJob()
    posted = []

    def fake_post(url, json=None, timeout=None):
        posted.append((url, json))
        return StubResponse()

    monkeypatch.setattr(tasks, "get_settings", lambda: settings)
    monkeypatch.setattr(tasks, "get_current_job", lambda: job)
    monkeypatch.setattr(tasks.requests, "post", fake_post)
    return job, posted


def make_payload(source: Path, webhook_url=None) -> dict:
    return TransformRequest(
        operation=Operation.COMPRESS,
        input_path=source,
        original_filename="photo.jpg",
        original_size=source.stat().st_size,
        params=CompressParams(quality=50),
        webhook_url=webhook_url,
    ).to_payload()


def test_job_reports_progress_and_notifies(worker_env, sample_image, settings) -> None:
    job, posted = worker_env

    result = tasks.run_transform_job(make_payload(sample_image(), webhook_url="https://hooks.test/done"))

    assert (settings.processed_dir / result["filename"]).is_file()
    assert job.saved_progress == [10, 90, 100]
    url, body = posted[0]
    assert url == "https://hooks.test/done"
    assert body["jobId"] == "job-42"
    assert body["status"] == "completed"
    assert body["data"] == result
    assert body["error"] is None


def test_failed_job_records_reason(worker_env, tmp_path: Path) -> None:
    job, posted = worker_env
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"garbage")

    with pytest.raises(ImageProcessingError):
        tasks.run_transform_job(make_payload(broken, webhook_url="https://hooks.test/done"))

    assert "broken.jpg" in job.meta["error"]
    assert posted[0][1]["status"] == "failed"
    assert posted[0][1]["data"] is None


def test_failure_with_retries_left_does_not_notify(worker_env, tmp_path: Path) -> None:
    job, posted = worker_env
    job.retries_left = 1
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"garbage")

    with pytest.raises(ImageProcessingError):
        tasks.run_transform_job(make_payload(broken, webhook_url="https://hooks.test/done"))

    assert posted == []


def test_webhook_errors_are_swallowed(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_post(url, json=None, timeout=None):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(tasks.requests, "post", failing_post)

    assert tasks.send_webhook("https://hooks.test/x", "1", "completed", data={}) is False
