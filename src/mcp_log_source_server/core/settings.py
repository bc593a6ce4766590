"""Settings blob models and the key/value settings store.

The blob layout matches what the dashboard persists per source::

    {
      "basePath": "/var/log/nginx",
      "logFiles": [{"path": ..., "type": ..., "enabled": true}],
      "excludeFilters": {"files": [], "directories": [], "paths": []},
      "customRegex": {"<path>": {"regex": ..., "logType": ..., "updatedAt": ...}}
    }

Unknown keys are preserved so other settings owners are never clobbered.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .models import LogKind, coerce_kind

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ExcludeFilters(_CamelModel):
    files: list[str] = Field(default_factory=list, description="File-name globs.")
    directories: list[str] = Field(default_factory=list, description="Directory-name globs.")
    paths: list[str] = Field(default_factory=list, description="Absolute path globs or prefixes.")

    def is_empty(self) -> bool:
        return not (self.files or self.directories or self.paths)


class ManualLogFile(_CamelModel):
    path: str
    type: str = LogKind.CUSTOM.value
    enabled: bool = True

    @property
    def kind(self) -> LogKind:
        return coerce_kind(self.type)


class StoredOverride(_CamelModel):
    regex: str
    log_type: str = LogKind.CUSTOM.value
    updated_at: datetime | None = None


class LogSourceConfig(_CamelModel):
    """Per-source settings read from the settings store."""

    base_path: str | None = None
    access_pattern: str | None = None
    error_pattern: str | None = None
    max_lines: int = Field(default=0, ge=0, description="0 = unlimited backfill.")
    read_compressed: bool = False
    exclude_filters: ExcludeFilters = Field(default_factory=ExcludeFilters)
    log_files: list[ManualLogFile] = Field(
        default_factory=list,
        validation_alias=AliasChoices("logFiles", "manualFiles", "log_files"),
    )
    custom_regex: dict[str, StoredOverride] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("customRegex", "overrides", "custom_regex"),
    )
    default_regex: dict[str, str] = Field(default_factory=dict)

    def to_blob(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_config(source_id: str, blob: dict | None) -> LogSourceConfig:
    """Validate a raw blob; a corrupt blob is reported and replaced by defaults."""
    if not blob:
        return LogSourceConfig()
    try:
        return LogSourceConfig.model_validate(blob)
    except ValidationError as exc:
        logger.warning("Ignoring invalid settings for %s: %s", source_id, exc)
        return LogSourceConfig()


class SettingsStore(Protocol):
    """Key/value store owned by the settings collaborator."""

    def get(self, source_id: str) -> LogSourceConfig: ...

    def put(self, source_id: str, config: LogSourceConfig) -> None: ...


class InMemorySettingsStore:
    """Process-local store, used by tests and when no settings file is configured."""

    def __init__(self, initial: dict[str, dict] | None = None) -> None:
        self._blobs: dict[str, dict] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, source_id: str) -> LogSourceConfig:
        with self._lock:
            blob = self._blobs.get(source_id)
        return parse_config(source_id, blob)

    def put(self, source_id: str, config: LogSourceConfig) -> None:
        blob = config.to_blob()
        with self._lock:
            self._blobs[source_id] = blob


class JsonFileSettingsStore:
    """Store all sources in one JSON document, replaced atomically on write."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, dict]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a JSON object: {self.path}")
        return data

    def get(self, source_id: str) -> LogSourceConfig:
        with self._lock:
            data = self._load()
        return parse_config(source_id, data.get(source_id))

    def put(self, source_id: str, config: LogSourceConfig) -> None:
        with self._lock:
            data = self._load()
            data[source_id] = config.to_blob()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".settings-", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise


def settings_store_from(path: str | None) -> SettingsStore:
    if path:
        return JsonFileSettingsStore(path)
    return InMemorySettingsStore()
