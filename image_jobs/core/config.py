from __future__ import annotations

import logging
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, NonNegativeFloat, PositiveInt, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from image_jobs.models import SystemSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Process configuration read from ``APP_*`` environment variables and ``.env``.

    The ``*_max_requests``/``*_window_ms``/retention fields are only the fallback
    values used when the persistent settings document cannot be read.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Image Tools Service"
    log_level: str = "INFO"
    api_prefix: str = "/api"

    storage_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "image_tools" / "uploads"
    )
    processed_dir_name: str = "processed"
    archives_dir_name: str = "archives"
    state_dir_name: str = "state"

    redis_url: str = "redis://localhost:6379/0"
    queue_enabled: bool = True
    queue_check_interval_seconds: NonNegativeFloat = 5.0
    queue_probe_timeout_seconds: NonNegativeFloat = 3.0
    job_timeout_seconds: PositiveInt = 180
    job_retry_attempts: int = Field(default=1, ge=0, le=5)
    job_result_ttl_seconds: PositiveInt = 24 * 60 * 60
    job_failure_ttl_seconds: PositiveInt = 24 * 60 * 60
    webhook_timeout_seconds: NonNegativeFloat = 10.0

    settings_cache_seconds: NonNegativeFloat = 60.0
    rate_limiting_enabled: bool = True
    max_cached_limiters: PositiveInt = 10

    cleanup_scheduler_enabled: bool = True
    cleanup_grace_seconds: NonNegativeFloat = 0.0

    admin_token: Optional[str] = None

    # Fallback values for the admin-tunable settings document.
    image_processing_max_requests: PositiveInt = 50
    image_processing_window_ms: PositiveInt = 300_000
    batch_operation_max_requests: PositiveInt = 15
    batch_operation_window_ms: PositiveInt = 600_000
    api_max_requests: PositiveInt = 1000
    api_window_ms: PositiveInt = 900_000
    max_file_size: PositiveInt = 52_428_800
    max_files: PositiveInt = 10
    processed_file_retention_hours: NonNegativeFloat = 48
    archive_file_retention_hours: NonNegativeFloat = 24
    temp_file_retention_hours: NonNegativeFloat = 2
    auto_cleanup_enabled: bool = True
    cleanup_interval_hours: NonNegativeFloat = 6

    @property
    def uploads_dir(self) -> Path:
        return self.storage_root

    @property
    def processed_dir(self) -> Path:
        return self.storage_root / self.processed_dir_name

    @property
    def archives_dir(self) -> Path:
        return self.storage_root / self.archives_dir_name

    @property
    def state_dir(self) -> Path:
        return self.storage_root / self.state_dir_name

    @property
    def settings_file(self) -> Path:
        return self.state_dir / "system_settings.json"

    def ensure_directories(self) -> None:
        for directory in {
            self.uploads_dir,
            self.processed_dir,
            self.archives_dir,
            self.state_dir,
        }:
            directory.mkdir(parents=True, exist_ok=True)

    def fallback_snapshot(self) -> SystemSettings:
        """Settings snapshot built from the environment, used when the store is unreachable."""

        values = {name: getattr(self, name) for name in SystemSettings.model_fields}
        try:
            return SystemSettings.model_validate(values)
        except ValidationError as exc:
            # Error locations name either the field or its camelCase alias.
            invalid = {str(error["loc"][0]) for error in exc.errors() if error["loc"]}
        rejected = sorted(name for name in values if name in invalid or to_camel(name) in invalid)
        logger.warning("Environment fallback out of range for %s, using built-in defaults for them", rejected)
        kept = {name: value for name, value in values.items() if name not in rejected}
        return SystemSettings.model_validate(kept)


@lru_cache
def get_settings() -> Settings:
    return Settings()
