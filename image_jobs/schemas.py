from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ArchiveFile(CamelModel):
    filename: str = Field(min_length=1)
    original_name: Optional[str] = None


class ArchiveRequest(CamelModel):
    files: List[ArchiveFile] = Field(default_factory=list)


class SettingsUpdate(CamelModel):
    """Partial update of the system settings; bounds are checked on the merged document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    image_processing_max_requests: Optional[int] = None
    image_processing_window_ms: Optional[int] = None
    batch_operation_max_requests: Optional[int] = None
    batch_operation_window_ms: Optional[int] = None
    api_max_requests: Optional[int] = None
    api_window_ms: Optional[int] = None
    max_file_size: Optional[int] = None
    max_files: Optional[int] = None
    processed_file_retention_hours: Optional[float] = None
    archive_file_retention_hours: Optional[float] = None
    temp_file_retention_hours: Optional[float] = None
    auto_cleanup_enabled: Optional[bool] = None
    cleanup_interval_hours: Optional[float] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class HealthResponse(BaseModel):
    status: str
    queue: str
