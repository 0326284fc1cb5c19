from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from image_jobs.models import ImmediateResult, JobHandle, TransformRequest
from image_jobs.services.dispatcher import DirectExecutor, JobDispatcher, QueuedExecutor
from image_jobs.services.errors import TransformFailedError
from image_jobs.services.queue_backend import QueueAvailabilityDetector
from image_processing import (
    CompressParams,
    ConvertParams,
    CropParams,
    ImageTransformService,
    InvalidParameterError,
    Operation,
    ResizeParams,
)

OPERATION_PARAMS = {
    Operation.COMPRESS: CompressParams(quality=60),
    Operation.RESIZE: ResizeParams(width=32),
    Operation.CONVERT: ConvertParams(format="png"),
    Operation.CROP: CropParams(left=0, top=0, width=16, height=16),
}


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_request(source: Path, operation: Operation, webhook_url=None) -> TransformRequest:
    return TransformRequest(
        operation=operation,
        input_path=source,
        original_filename="photo.jpg",
        original_size=source.stat().st_size,
        params=OPERATION_PARAMS[operation],
        webhook_url=webhook_url,
    )


def make_dispatcher(tmp_path: Path, probe, job_queue) -> tuple[JobDispatcher, QueueAvailabilityDetector]:
    detector = QueueAvailabilityDetector("redis://unused", check_interval=0, probe=probe)
    direct = DirectExecutor(ImageTransformService(tmp_path / "processed"))
    return JobDispatcher(detector, direct, QueuedExecutor(job_queue)), detector


@pytest.mark.parametrize("operation", list(Operation))
def test_unavailable_queue_processes_directly(tmp_path: Path, sample_image, probe, job_queue, operation) -> None:
    dispatcher, _ = make_dispatcher(tmp_path, probe, job_queue)
    source = sample_image()

    outcome = asyncio.run(dispatcher.submit(make_request(source, operation)))

    assert isinstance(outcome, ImmediateResult)
    assert (tmp_path / "processed" / outcome.filename).is_file()
    assert outcome.data["downloadUrl"].startswith(f"/api/images/download/{outcome.filename}")
    assert job_queue.enqueued == []


@pytest.mark.parametrize("operation", list(Operation))
def test_available_queue_returns_handle(tmp_path: Path, sample_image, probe, job_queue, operation) -> None:
    probe.available = True
    dispatcher, _ = make_dispatcher(tmp_path, probe, job_queue)
    source = sample_image()

    outcome = asyncio.run(dispatcher.submit(make_request(source, operation, webhook_url="https://hooks.test/x")))

    assert isinstance(outcome, JobHandle)
    assert outcome.to_dict() == {
        "jobId": "1",
        "statusUrl": f"/api/images/status/1?type={operation.value}",
    }
    assert job_queue.enqueued[0].webhook_url == "https://hooks.test/x"
    assert not (tmp_path / "processed").exists() or not any((tmp_path / "processed").iterdir())


def test_enqueue_failure_falls_back_to_direct(tmp_path: Path, sample_image, probe, job_queue) -> None:
    probe.available = True
    job_queue.fail_enqueue = True
    dispatcher, _ = make_dispatcher(tmp_path, probe, job_queue)

    outcome = asyncio.run(dispatcher.submit(make_request(sample_image(), Operation.COMPRESS)))

    assert isinstance(outcome, ImmediateResult)
    assert outcome.data["compressedSize"] > 0


def test_direct_transform_failure_is_labelled(tmp_path: Path, probe, job_queue) -> None:
    dispatcher, _ = make_dispatcher(tmp_path, probe, job_queue)
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"not an image")

    with pytest.raises(TransformFailedError) as excinfo:
        asyncio.run(dispatcher.submit(make_request(broken, Operation.COMPRESS)))

    assert excinfo.value.label == "Image compression failed"


def test_direct_crop_outside_bounds_is_invalid(tmp_path: Path, sample_image, probe, job_queue) -> None:
    dispatcher, _ = make_dispatcher(tmp_path, probe, job_queue)
    request = make_request(sample_image(size=(20, 20)), Operation.CROP)
    request.params = CropParams(left=25, top=0, width=5, height=5)

    with pytest.raises(InvalidParameterError):
        asyncio.run(dispatcher.submit(request))


def test_detector_caches_probe_result(probe) -> None:
    clock = FakeClock()
    probe.available = True
    detector = QueueAvailabilityDetector("redis://unused", check_interval=5, clock=clock, probe=probe)

    assert asyncio.run(detector.is_queue_available()) is True
    probe.available = False
    clock.now += 4
    assert asyncio.run(detector.is_queue_available()) is True
    clock.now += 1
    assert asyncio.run(detector.is_queue_available()) is False
    assert probe.calls == 2


def test_detector_treats_probe_errors_as_unavailable(probe) -> None:
    probe.available = ConnectionRefusedError("refused")
    detector = QueueAvailabilityDetector("redis://unused", probe=probe)

    assert asyncio.run(detector.is_queue_available()) is False


def test_detector_refresh_forces_probe(probe) -> None:
    detector = QueueAvailabilityDetector("redis://unused", check_interval=60, probe=probe)
    asyncio.run(detector.is_queue_available())

    probe.available = True
    detector.refresh()

    assert asyncio.run(detector.is_queue_available()) is True
    assert probe.calls == 2


def test_disabled_queue_never_probes(probe) -> None:
    probe.available = True
    detector = QueueAvailabilityDetector("redis://unused", enabled=False, probe=probe)

    assert asyncio.run(detector.is_queue_available()) is False
    assert probe.calls == 0
