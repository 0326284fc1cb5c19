from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from image_processing import Operation, OperationParams, params_from_dict, params_to_dict

QUEUE_NAMES: Dict[Operation, str] = {
    Operation.COMPRESS: "image-compression",
    Operation.RESIZE: "image-resize",
    Operation.CONVERT: "image-conversion",
    Operation.CROP: "image-crop",
}


class SystemSettings(BaseModel):
    """Admin-tunable operational parameters. Instances are immutable snapshots."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore")

    image_processing_max_requests: int = Field(default=50, ge=1, le=1000)
    image_processing_window_ms: int = Field(default=300_000, ge=60_000, le=3_600_000)
    batch_operation_max_requests: int = Field(default=15, ge=1, le=100)
    batch_operation_window_ms: int = Field(default=600_000, ge=60_000, le=3_600_000)
    api_max_requests: int = Field(default=1000, ge=10, le=10_000)
    api_window_ms: int = Field(default=900_000, ge=60_000, le=3_600_000)

    max_file_size: int = Field(default=52_428_800, ge=1_048_576, le=104_857_600)
    max_files: int = Field(default=10, ge=1, le=50)

    processed_file_retention_hours: float = Field(default=48, ge=0, le=720)
    archive_file_retention_hours: float = Field(default=24, ge=0, le=168)
    temp_file_retention_hours: float = Field(default=2, ge=0, le=48)
    auto_cleanup_enabled: bool = True
    cleanup_interval_hours: float = Field(default=6, ge=1, le=72)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class RateLimitCategory(str, Enum):
    IMAGE_PROCESSING = "image_processing"
    BATCH_OPERATION = "batch_operation"
    API = "api"


@dataclass(frozen=True)
class RateLimitRule:
    category: RateLimitCategory
    window_ms: int
    max_requests: int

    @property
    def retry_after_seconds(self) -> int:
        return -(-self.window_ms // 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {"windowMs": self.window_ms, "max": self.max_requests}


@dataclass(frozen=True)
class RetentionPolicy:
    processed_hours: float
    archive_hours: float
    temp_hours: float
    enabled: bool


def rate_limit_rule(snapshot: SystemSettings, category: RateLimitCategory) -> RateLimitRule:
    window_ms, max_requests = {
        RateLimitCategory.IMAGE_PROCESSING: (
            snapshot.image_processing_window_ms,
            snapshot.image_processing_max_requests,
        ),
        RateLimitCategory.BATCH_OPERATION: (
            snapshot.batch_operation_window_ms,
            snapshot.batch_operation_max_requests,
        ),
        RateLimitCategory.API: (snapshot.api_window_ms, snapshot.api_max_requests),
    }[category]
    return RateLimitRule(category=category, window_ms=window_ms, max_requests=max_requests)


def retention_policy(snapshot: SystemSettings) -> RetentionPolicy:
    return RetentionPolicy(
        processed_hours=snapshot.processed_file_retention_hours,
        archive_hours=snapshot.archive_file_retention_hours,
        temp_hours=snapshot.temp_file_retention_hours,
        enabled=snapshot.auto_cleanup_enabled,
    )


@dataclass
class TransformRequest:
    operation: Operation
    input_path: Path
    original_filename: str
    original_size: int
    params: OperationParams
    webhook_url: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.value,
            "inputPath": str(self.input_path),
            "originalFilename": self.original_filename,
            "originalSize": self.original_size,
            "params": params_to_dict(self.params),
            "webhookUrl": self.webhook_url,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "TransformRequest":
        operation = Operation(data["operation"])
        return cls(
            operation=operation,
            input_path=Path(data["inputPath"]),
            original_filename=data["originalFilename"],
            original_size=int(data.get("originalSize") or 0),
            params=params_from_dict(operation, data.get("params") or {}),
            webhook_url=data.get("webhookUrl"),
        )


@dataclass
class JobHandle:
    job_id: str
    operation: Operation
    status_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"jobId": self.job_id, "statusUrl": self.status_url}


@dataclass
class ImmediateResult:
    operation: Operation
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return self.data["filename"]

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)


class JobState(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobStatus:
    job_id: str
    state: JobState
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.job_id,
            "state": self.state.value,
            "progress": self.progress,
            "result": self.result if self.state is JobState.COMPLETED else None,
            "error": self.error if self.state is JobState.FAILED else None,
        }
