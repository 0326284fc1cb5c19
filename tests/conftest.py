from __future__ import annotations

import itertools
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from redis.exceptions import ConnectionError as RedisConnectionError

from image_jobs.core.config import Settings
from image_jobs.main import create_app
from image_jobs.models import JobStatus, SystemSettings, TransformRequest
from image_jobs.services.container import ServiceContainer
from image_jobs.services.errors import SettingsProviderError
from image_processing import Operation


def create_sample_image(
    path: Path,
    size: tuple[int, int] = (64, 48),
    fmt: str = "JPEG",
    color: tuple[int, ...] = (220, 40, 40),
) -> Path:
    mode = "RGBA" if len(color) == 4 else "RGB"
    image = Image.new(mode, size, color)
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, format=fmt)
    return path


class MemorySettingsProvider:
    def __init__(self, settings: Optional[SystemSettings] = None) -> None:
        self.settings = settings or SystemSettings()
        self.fail = False
        self.loads = 0
        self.saves = 0

    async def load(self) -> SystemSettings:
        self.loads += 1
        if self.fail:
            raise SettingsProviderError("store offline")
        return self.settings

    async def save(self, settings: SystemSettings) -> SystemSettings:
        if self.fail:
            raise SettingsProviderError("store offline")
        self.saves += 1
        self.settings = settings
        return settings


class FakeJobQueue:
    """In-memory stand-in for the RQ adapter."""

    def __init__(self) -> None:
        self.enqueued: List[TransformRequest] = []
        self.jobs: Dict[str, tuple[Operation, JobStatus]] = {}
        self.fail_enqueue = False
        self.fail_fetch = False
        self._ids = itertools.count(1)

    def enqueue(self, request: TransformRequest) -> str:
        if self.fail_enqueue:
            raise RedisConnectionError("broker went away")
        self.enqueued.append(request)
        return str(next(self._ids))

    def fetch(self, operation: Operation, job_id: str) -> Optional[JobStatus]:
        if self.fail_fetch:
            raise RedisConnectionError("broker went away")
        entry = self.jobs.get(job_id)
        if entry is None or entry[0] is not operation:
            return None
        return entry[1]


class StubProbe:
    def __init__(self, available: bool = False) -> None:
        self.available = available
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        if isinstance(self.available, Exception):
            raise self.available
        return self.available


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        storage_root=tmp_path / "uploads",
        queue_check_interval_seconds=0,
        cleanup_scheduler_enabled=False,
        admin_token=None,
    )


@pytest.fixture
def provider() -> MemorySettingsProvider:
    return MemorySettingsProvider()


@pytest.fixture
def job_queue() -> FakeJobQueue:
    return FakeJobQueue()


@pytest.fixture
def probe() -> StubProbe:
    return StubProbe(available=False)


@pytest.fixture
def services(
    settings: Settings,
    provider: MemorySettingsProvider,
    job_queue: FakeJobQueue,
    probe: StubProbe,
) -> ServiceContainer:
    return ServiceContainer.build(settings, provider=provider, job_queue=job_queue, probe=probe)


@pytest.fixture
def client(services: ServiceContainer) -> TestClient:
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


@pytest.fixture
def sample_image(tmp_path: Path) -> Callable[..., Path]:
    def factory(name: str = "sample.jpg", **kwargs) -> Path:
        return create_sample_image(tmp_path / "inputs" / name, **kwargs)

    return factory
