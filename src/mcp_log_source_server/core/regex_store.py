"""Regex resolution and the per-file override store.

Reads are served from an immutable per-source snapshot that is swapped on
every write, so resolving never takes a lock. Writes to the same
``(source, path)`` key are serialized; writes to different keys of one source
are persisted one at a time, each time merging the latest snapshot into a
freshly read settings blob so concurrent saves never lose each other.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from types import MappingProxyType

from .errors import ensure_pattern
from .models import LogKind, Resolution, coerce_kind
from .normalize import normalize
from .settings import LogSourceConfig, SettingsStore, StoredOverride
from .sources import SourceType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Snapshot:
    overrides: Mapping[str, StoredOverride]
    defaults: Mapping[str, str]


class RegexResolver:
    """Resolve the effective regex of a file and manage overrides."""

    def __init__(self, store: SettingsStore) -> None:
        self.store = store
        self._snapshots: dict[SourceType, _Snapshot] = {}
        self._commit_lock = threading.Lock()
        self._key_locks: dict[tuple[SourceType, str], threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._persist_locks = {s: threading.Lock() for s in SourceType}

    # ------------------------------------------------------------------ snapshots

    def _snapshot(self, source: SourceType) -> _Snapshot:
        snap = self._snapshots.get(source)
        if snap is not None:
            return snap
        with self._commit_lock:
            snap = self._snapshots.get(source)
            if snap is None:
                snap = self._from_config(self.store.get(source.value))
                self._snapshots[source] = snap
        return snap

    @staticmethod
    def _from_config(cfg: LogSourceConfig) -> _Snapshot:
        return _Snapshot(
            overrides=MappingProxyType(dict(cfg.custom_regex)),
            defaults=MappingProxyType(dict(cfg.default_regex)),
        )

    def refresh(self, source: SourceType | None = None) -> None:
        """Drop cached snapshots so the next read reloads the settings store."""
        with self._commit_lock:
            if source is None:
                self._snapshots.clear()
            else:
                self._snapshots.pop(source, None)

    def _key_lock(self, source: SourceType, key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get((source, key))
            if lock is None:
                lock = self._key_locks[(source, key)] = threading.Lock()
            return lock

    # ------------------------------------------------------------------ reads

    def lookup(self, source: SourceType, path: str) -> tuple[str, StoredOverride] | None:
        """Find an override by exact path, then by logical path."""
        overrides = self._snapshot(source).overrides
        for key in (path, normalize(path)):
            found = overrides.get(key)
            if found is not None:
                return key, found
        return None

    def default_for(self, source: SourceType, kind: LogKind, path: str | None = None) -> str:
        configured = self._snapshot(source).defaults.get(kind.value)
        if configured:
            return configured
        return source.profile.default_regex(kind, path)

    def resolve(self, source: SourceType, path: str, kind: LogKind | str | None = None) -> Resolution:
        """Saved override wins; else the configured or built-in default for the kind; else ``""``."""
        found = self.lookup(source, path)
        if kind is None:
            kind = coerce_kind(found[1].log_type) if found else source.profile.kind_for(path)
        kind = coerce_kind(kind)
        default = self.default_for(source, kind, path)
        if found is not None:
            return Resolution(regex=found[1].regex, is_override=True, default_regex=default, log_type=kind)
        return Resolution(regex=default, is_override=False, default_regex=default, log_type=kind)

    def overrides(self, source: SourceType) -> dict[str, StoredOverride]:
        return dict(self._snapshot(source).overrides)

    # ------------------------------------------------------------------ writes

    def _commit(self, source: SourceType, change: dict[str, StoredOverride | None]) -> None:
        with self._commit_lock:
            current = self._snapshots.get(source) or self._from_config(self.store.get(source.value))
            merged = dict(current.overrides)
            for key, value in change.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            self._snapshots[source] = _Snapshot(MappingProxyType(merged), current.defaults)

    def _persist(self, source: SourceType) -> None:
        with self._persist_locks[source]:
            cfg = self.store.get(source.value)
            latest = self._snapshot(source)
            self.store.put(source.value, cfg.model_copy(update={"custom_regex": dict(latest.overrides)}))

    def save_override(
        self,
        source: SourceType,
        path: str,
        regex: str,
        log_type: LogKind | str | None = None,
    ) -> Resolution:
        """Validate and store an override for the logical path of ``path``.

        A rotated variant (``access.log.1``) configures its live file. Any entry
        still keyed by the physical path is dropped so it cannot shadow the new
        one. Nothing is stored when ``regex`` is invalid.
        """
        ensure_pattern(regex)
        kind = coerce_kind(log_type) if log_type is not None else source.profile.kind_for(path)
        key = normalize(path)
        with self._key_lock(source, key):
            entry = StoredOverride(regex=regex, log_type=kind.value, updated_at=datetime.now(UTC))
            changes: dict[str, StoredOverride | None] = {key: entry}
            if path != key and path in self._snapshot(source).overrides:
                changes[path] = None
            self._commit(source, changes)
            self._persist(source)
        logger.info("Saved regex override for %s (%s)", key, source.value)
        return self.resolve(source, path, kind)

    def delete_override(self, source: SourceType, path: str) -> Resolution:
        """Remove overrides stored under ``path`` and its logical path. Idempotent."""
        keys = {path, normalize(path)}
        found = self.lookup(source, path)
        kind = coerce_kind(found[1].log_type) if found else source.profile.kind_for(path)
        with self._key_lock(source, normalize(path)):
            existing = self._snapshot(source).overrides
            if any(k in existing for k in keys):
                self._commit(source, {k: None for k in keys})
                self._persist(source)
                logger.info("Deleted regex override for %s (%s)", path, source.value)
        return self.resolve(source, path, kind)
