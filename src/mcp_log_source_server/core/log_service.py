"""Engine facade.

This module is the main integration point: it combines scanning, host
detection, classification, regex resolution and live streaming into the
operations exposed by the tool layer.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .classify import classify
from .config import EngineConfig
from .models import CandidateFile, Classification, HostDetection, LogKind, Resolution, ScanMode, ScanResult
from .normalize import normalize
from .regex_store import RegexResolver
from .regex_suggest import Suggestion, suggest
from .rotation import detect, host_path
from .scanning import is_file_excluded, read_sample, scan
from .settings import LogSourceConfig, SettingsStore, settings_store_from
from .sources import DefaultFile, SourceType
from .tail import StreamEvent, StreamMultiplexer, TailSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DetectedFiles:
    source: SourceType
    base_path: str
    mode: ScanMode
    truncated: bool
    classification: Classification
    detected_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "basePath": self.base_path,
            "mode": self.mode.value,
            "truncated": self.truncated,
            "detectedAt": self.detected_at.isoformat(),
            "files": self.classification.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class _ScanKey:
    source: SourceType
    base_path: str
    patterns: tuple[str, ...]
    exclude: str


class LogSourceService:
    """Discovery, classification, regex management and streaming for all sources."""

    def __init__(self, config: EngineConfig | None = None, store: SettingsStore | None = None) -> None:
        self.config = config or EngineConfig()
        self.store = store or settings_store_from(self.config.settings_file)
        self.resolver = RegexResolver(self.store)
        self.streams = StreamMultiplexer(self.config)
        self._detection: HostDetection | None = None
        self._detection_lock = asyncio.Lock()
        self._full_scans: dict[_ScanKey, asyncio.Task[ScanResult]] = {}

    @classmethod
    def from_env(cls) -> LogSourceService:
        return cls(EngineConfig.from_env())

    def source_config(self, source: SourceType) -> LogSourceConfig:
        return self.store.get(source.value)

    # ------------------------------------------------------------------ defaults

    def list_default_files(self, source: SourceType) -> list[dict[str, Any]]:
        """Built-in files for the source, merged with manually configured ones."""
        cfg = self.source_config(source)
        manual = {f.path: f for f in cfg.log_files}
        out: list[dict[str, Any]] = []
        for d in source.profile.default_files:
            entry = manual.pop(d.path, None)
            enabled = entry.enabled if entry is not None else d.enabled
            out.append(DefaultFile(d.path, d.log_type, enabled).to_dict() | {"manual": False})
        for f in manual.values():
            out.append({"path": f.path, "type": f.kind.value, "enabled": f.enabled, "manual": True})
        return out

    # ------------------------------------------------------------------ detection

    async def detect_logging_services(self, *, refresh: bool = False) -> HostDetection:
        """Host services and rotation policy; cached until ``refresh`` is requested."""
        async with self._detection_lock:
            if self._detection is None or refresh:
                self._detection = await asyncio.to_thread(detect, self.config.host_root)
                logger.info(
                    "Host detection: rotation=%s services=%s",
                    self._detection.rotation.system.value,
                    ",".join(s.name for s in self._detection.services) or "none",
                )
            return self._detection

    # ------------------------------------------------------------------ files

    def _base_path(self, source: SourceType, cfg: LogSourceConfig, base_path: str | None) -> str:
        if base_path:
            return base_path
        if cfg.base_path:
            return cfg.base_path
        return host_path(self.config.host_root, source.profile.base_path)

    def _scan(self, source: SourceType, key: _ScanKey, cfg: LogSourceConfig, mode: ScanMode) -> ScanResult:
        quick = mode == ScanMode.QUICK
        return scan(
            key.base_path,
            key.patterns,
            cfg.exclude_filters,
            depth=self.config.quick_max_depth if quick else self.config.full_max_depth,
            mode=mode,
            kind_for=source.profile.kind_for,
            time_budget=self.config.quick_time_budget if quick else None,
            max_files=self.config.max_files if quick else self.config.full_max_files,
            sample_lines=self.config.sample_lines,
        )

    def _manual_candidates(
        self,
        cfg: LogSourceConfig,
        found: set[str],
        mode: ScanMode,
    ) -> list[CandidateFile]:
        out = []
        for f in cfg.log_files:
            if not f.enabled or f.path in found:
                continue
            if is_file_excluded(f.path, os.path.basename(f.path), cfg.exclude_filters):
                continue
            try:
                st = os.stat(f.path)
            except OSError as exc:
                logger.debug("Manual log file unavailable %s: %s", f.path, exc)
                continue
            out.append(
                CandidateFile(
                    path=f.path,
                    declared_type=f.kind,
                    size_bytes=st.st_size,
                    modified_at=datetime.fromtimestamp(st.st_mtime, tz=UTC),
                    sample=read_sample(f.path, self.config.sample_lines) if mode == ScanMode.FULL else (),
                )
            )
        return out

    async def _full_scan(self, source: SourceType, key: _ScanKey, cfg: LogSourceConfig) -> ScanResult:
        task = self._full_scans.pop(key, None)
        if task is not None:
            try:
                return await task
            except OSError as exc:
                logger.info("Background full scan failed, rescanning: %s", exc)
        return await asyncio.to_thread(self._scan, source, key, cfg, ScanMode.FULL)

    def _schedule_full_scan(self, source: SourceType, key: _ScanKey, cfg: LogSourceConfig) -> None:
        if key in self._full_scans and not self._full_scans[key].done():
            return
        task = asyncio.create_task(asyncio.to_thread(self._scan, source, key, cfg, ScanMode.FULL))
        task.add_done_callback(_log_task_failure)
        self._full_scans[key] = task

    async def detected_files(
        self,
        source: SourceType,
        *,
        mode: ScanMode = ScanMode.QUICK,
        base_path: str | None = None,
        refresh: bool = False,
    ) -> DetectedFiles:
        """Scan and classify the source's files.

        A quick scan schedules a full scan in the background; the next full
        request reuses its result. Every logical file of a quick scan is also in
        the full scan of the same directory unless the full result is
        ``truncated``; full scans get the larger ``full_max_files`` cap.
        """
        cfg = self.source_config(source)
        key = _ScanKey(
            source=source,
            base_path=self._base_path(source, cfg, base_path),
            patterns=tuple(
                source.profile.patterns(access_pattern=cfg.access_pattern, error_pattern=cfg.error_pattern)
            ),
            exclude=cfg.exclude_filters.model_dump_json(),
        )
        if refresh:
            stale = self._full_scans.pop(key, None)
            if stale is not None:
                stale.cancel()

        if mode == ScanMode.QUICK:
            result = await asyncio.to_thread(self._scan, source, key, cfg, mode)
            self._schedule_full_scan(source, key, cfg)
        else:
            result = await self._full_scan(source, key, cfg)

        detection = await self.detect_logging_services(refresh=refresh)
        files = list(result.files)
        found = {f.path for f in files}
        files.extend(await asyncio.to_thread(self._manual_candidates, cfg, found, mode))

        manual = {normalize(f.path): f for f in cfg.log_files}
        classification = classify(
            files,
            profile=source.profile,
            resolve=lambda path, kind: self.resolver.resolve(source, path, kind),
            rotation=detection.rotation,
            host_root=self.config.host_root,
            manual=manual,
        )
        return DetectedFiles(
            source=source,
            base_path=result.base_path,
            mode=mode,
            truncated=result.truncated,
            classification=classification,
            detected_at=datetime.now(UTC),
        )

    # ------------------------------------------------------------------ regex

    def regex_config(self, source: SourceType, path: str, log_type: str | None = None) -> Resolution:
        return self.resolver.resolve(source, path, log_type)

    def put_regex_config(
        self,
        source: SourceType,
        path: str,
        regex: str,
        log_type: str | None = None,
    ) -> Resolution:
        return self.resolver.save_override(source, path, regex, log_type)

    def delete_regex_config(self, source: SourceType, path: str) -> Resolution:
        return self.resolver.delete_override(source, path)

    def list_custom_regexes(self, source: SourceType | None = None) -> dict[str, dict[str, dict[str, Any]]]:
        """Saved overrides as ``{sourceId: {path: {regex, logType, updatedAt}}}``.

        Every requested source gets an entry, empty when it has no overrides.
        """
        sources = [source] if source is not None else list(SourceType)
        return {
            s.value: {
                path: {
                    "regex": o.regex,
                    "logType": o.log_type,
                    "updatedAt": o.updated_at.isoformat() if o.updated_at else None,
                }
                for path, o in sorted(self.resolver.overrides(s).items())
            }
            for s in sources
        }

    @staticmethod
    def generate_regex(sample_line: str) -> Suggestion:
        return suggest(sample_line)

    # ------------------------------------------------------------------ streams

    def open_stream(
        self,
        source: SourceType,
        path: str,
        *,
        max_lines: int | None = None,
        read_compressed: bool | None = None,
        log_type: LogKind | str | None = None,
    ) -> TailSession:
        cfg = self.source_config(source)
        resolution = self.resolver.resolve(source, path, log_type)
        return self.streams.open_stream(
            path,
            regex=resolution.regex,
            read_compressed=cfg.read_compressed if read_compressed is None else read_compressed,
            max_lines=cfg.max_lines if max_lines is None else max_lines,
        )

    async def read_stream(self, session_id: str, max_events: int = 100, wait_seconds: float = 0.0) -> list[StreamEvent]:
        return await self.streams.read(session_id, max_events, wait_seconds)

    async def close_stream(self, session_id: str) -> bool:
        return await self.streams.close_stream(session_id)

    def list_streams(self) -> list[dict[str, Any]]:
        return self.streams.list_streams()

    async def shutdown(self) -> None:
        for task in self._full_scans.values():
            task.cancel()
        self._full_scans.clear()
        await self.streams.shutdown()


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background full scan failed: %s", exc)
