from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Protocol

from pydantic.alias_generators import to_camel

from image_jobs.models import (
    RateLimitCategory,
    RateLimitRule,
    RetentionPolicy,
    SystemSettings,
    rate_limit_rule,
    retention_policy,
)
from image_jobs.services.errors import SettingsProviderError

logger = logging.getLogger(__name__)


class SettingsProvider(Protocol):
    async def load(self) -> SystemSettings: ...

    async def save(self, settings: SystemSettings) -> SystemSettings: ...


class JsonSettingsStore:
    """Persists the settings document as JSON; creates it with defaults on first read."""

    def __init__(self, path: Path) -> None:
        self.path = path

    async def load(self) -> SystemSettings:
        return await asyncio.to_thread(self._load_sync)

    async def save(self, settings: SystemSettings) -> SystemSettings:
        await asyncio.to_thread(self._write_sync, settings)
        return settings

    def _load_sync(self) -> SystemSettings:
        if not self.path.exists():
            settings = SystemSettings()
            self._write_sync(settings)
            return settings
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return SystemSettings.model_validate(data)
        except (OSError, ValueError) as exc:
            # ValidationError is a ValueError
            raise SettingsProviderError(f"Could not read settings from {self.path}: {exc}") from exc

    def _write_sync(self, settings: SystemSettings) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise SettingsProviderError(f"Could not write settings to {self.path}: {exc}") from exc


class SettingsCache:
    """Cached view of the settings document with a staleness window and explicit invalidation.

    Reads inside the window return the very same snapshot object. When a reload
    fails the last successfully loaded snapshot is served, and only without one
    the ``fallback`` snapshot built from the environment.
    """

    def __init__(
        self,
        provider: SettingsProvider,
        fallback: SystemSettings,
        cache_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._fallback = fallback
        self._cache_seconds = cache_seconds
        self._clock = clock
        self._snapshot: Optional[SystemSettings] = None
        self._loaded_at: Optional[float] = None
        self._last_known_good: Optional[SystemSettings] = None
        self._lock = asyncio.Lock()
        self._listeners: List[Callable[[], None]] = []

    def add_invalidation_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def _fresh_snapshot(self) -> Optional[SystemSettings]:
        if self._snapshot is None or self._loaded_at is None:
            return None
        if self._clock() - self._loaded_at < self._cache_seconds:
            return self._snapshot
        return None

    async def get_settings(self) -> SystemSettings:
        snapshot = self._fresh_snapshot()
        if snapshot is not None:
            return snapshot

        async with self._lock:
            # Another coroutine may have reloaded while we waited.
            snapshot = self._fresh_snapshot()
            if snapshot is not None:
                return snapshot
            try:
                loaded = await self._provider.load()
            except Exception as exc:
                if self._last_known_good is not None:
                    logger.warning("Failed to reload settings, keeping last known good snapshot: %s", exc)
                    return self._last_known_good
                logger.warning("Failed to load settings, using environment fallback: %s", exc)
                return self._fallback
            self._snapshot = loaded
            self._loaded_at = self._clock()
            self._last_known_good = loaded
            return loaded

    def invalidate(self) -> None:
        self._snapshot = None
        self._loaded_at = None
        for listener in list(self._listeners):
            listener()
        logger.info("Settings cache cleared")

    async def update(self, changes: Mapping[str, Any]) -> SystemSettings:
        """Validate ``changes`` on top of the stored document, persist them and invalidate.

        Raises ``pydantic.ValidationError`` for out-of-range values and
        ``SettingsProviderError`` when the store cannot be written.
        """

        try:
            current = await self._provider.load()
        except SettingsProviderError:
            logger.warning("Settings store unreadable, applying update on top of current snapshot")
            current = await self.get_settings()
        merged = {**current.to_dict(), **self._by_alias(changes)}
        updated = SystemSettings.model_validate(merged)
        saved = await self._provider.save(updated)
        self.invalidate()
        self._last_known_good = saved
        logger.info("System settings updated: %s", sorted(self._by_alias(changes)))
        return saved

    @staticmethod
    def _by_alias(changes: Mapping[str, Any]) -> dict[str, Any]:
        aliases = {name: to_camel(name) for name in SystemSettings.model_fields}
        known = set(aliases.values())
        result: dict[str, Any] = {}
        for key, value in changes.items():
            if key in aliases:
                result[aliases[key]] = value
            elif key in known:
                result[key] = value
        return result

    async def get_rate_limit(self, category: RateLimitCategory) -> RateLimitRule:
        return rate_limit_rule(await self.get_settings(), category)

    async def get_retention_policy(self) -> RetentionPolicy:
        return retention_policy(await self.get_settings())

    async def get_file_upload_limits(self) -> dict[str, int]:
        snapshot = await self.get_settings()
        return {"maxFileSize": snapshot.max_file_size, "maxFiles": snapshot.max_files}

