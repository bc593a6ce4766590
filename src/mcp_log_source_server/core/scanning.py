"""Filesystem scanning for candidate log files.

Two modes:
- QUICK: metadata only, compressed archives skipped, depth- and time-boxed.
- FULL: also reads a short header sample of every file (decompressing .gz/.bz2/.xz).

Quick results are always a subset of what a full scan returns for the same inputs.
"""

from __future__ import annotations

import bz2
import errno
import fnmatch
import gzip
import logging
import lzma
import os
import posixpath
import stat
import time
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import IO

from .errors import NotFoundError, PermissionDeniedError
from .models import CandidateFile, LogKind, ScanMode, ScanResult
from .normalize import compression_suffix, normalize, normalize_name
from .settings import ExcludeFilters

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_LINES = 5
MAX_BYTES_PER_LINE = 4096


def open_binary(path: str) -> IO[bytes]:
    """Open a log file for binary reading, transparently decompressing."""
    suffix = compression_suffix(path)
    if suffix == ".gz":
        return gzip.open(path, "rb")
    if suffix == ".bz2":
        return bz2.open(path, "rb")
    if suffix == ".xz":
        return lzma.open(path, "rb")
    return open(path, "rb")


def read_sample(path: str, max_lines: int = DEFAULT_SAMPLE_LINES) -> tuple[str, ...]:
    """Return up to ``max_lines`` non-empty decoded lines from the head of ``path``."""
    out: list[str] = []
    try:
        with open_binary(path) as f:
            for raw in f:
                line = raw[:MAX_BYTES_PER_LINE].decode("utf-8", errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                out.append(line)
                if len(out) >= max_lines:
                    break
    except (OSError, EOFError, lzma.LZMAError) as exc:
        logger.debug("Cannot sample %s: %s", path, exc)
    return tuple(out)


def _glob_any(value: str, globs: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(value, g) for g in globs)


def _path_excluded(path: str, rules: Sequence[str]) -> bool:
    for rule in rules:
        if not rule:
            continue
        prefix = rule.rstrip("/")
        if path == prefix or path.startswith(prefix + "/") or fnmatch.fnmatchcase(path, rule):
            return True
    return False


def is_dir_excluded(path: str, name: str, filters: ExcludeFilters) -> bool:
    return _glob_any(name, filters.directories) or _path_excluded(path, filters.paths)


def is_file_excluded(path: str, name: str, filters: ExcludeFilters) -> bool:
    return _glob_any(name, filters.files) or _path_excluded(path, filters.paths)


def matches_patterns(rel_path: str, name: str, patterns: Sequence[str]) -> bool:
    """True if the file (or its rotation-normalized name) matches an include glob."""
    if not patterns:
        return True
    logical_name = normalize_name(name)
    logical_rel = normalize(rel_path)
    for p in patterns:
        if "/" in p:
            if fnmatch.fnmatchcase(rel_path, p) or fnmatch.fnmatchcase(logical_rel, p):
                return True
        elif fnmatch.fnmatchcase(name, p) or fnmatch.fnmatchcase(logical_name, p):
            return True
    return False


def _check_base(base: str) -> None:
    try:
        st = os.stat(base)
    except FileNotFoundError as exc:
        raise NotFoundError(f"Base path not found: {base}", path=base) from exc
    except PermissionError as exc:
        raise PermissionDeniedError(f"Base path not readable: {base}", path=base) from exc
    if not stat.S_ISDIR(st.st_mode):
        raise NotFoundError(f"Base path is not a directory: {base}", path=base)
    if not os.access(base, os.R_OK | os.X_OK):
        raise PermissionDeniedError(f"Base path not readable: {base}", path=base)


def scan(
    base_path: str,
    patterns: Sequence[str],
    exclude: ExcludeFilters | None = None,
    *,
    depth: int = 2,
    mode: ScanMode = ScanMode.QUICK,
    kind_for: Callable[[str], LogKind] | None = None,
    time_budget: float | None = None,
    max_files: int | None = None,
    sample_lines: int = DEFAULT_SAMPLE_LINES,
    clock: Callable[[], float] = time.monotonic,
) -> ScanResult:
    """Walk ``base_path`` and return candidate files.

    ``depth`` is the number of sub-directory levels visited below the base
    (0 = base directory only). Exclude filters veto include patterns. Symlinked
    directories are not followed.
    """
    base = os.path.abspath(base_path)
    _check_base(base)

    exclude = exclude or ExcludeFilters()
    kind_for = kind_for or (lambda _p: LogKind.CUSTOM)
    deadline = clock() + time_budget if time_budget is not None else None

    files: list[CandidateFile] = []
    truncated = False
    skipped_dirs = 0

    if _path_excluded(base, exclude.paths):
        return ScanResult(base_path=base, mode=mode, files=[])

    stack: list[tuple[str, int]] = [(base, 0)]
    while stack:
        current, level = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            if current == base:
                if exc.errno in (errno.EACCES, errno.EPERM):
                    raise PermissionDeniedError(f"Base path not readable: {base}", path=base) from exc
                raise NotFoundError(f"Base path not found: {base}", path=base) from exc
            logger.debug("Skipping unreadable directory %s: %s", current, exc)
            skipped_dirs += 1
            continue

        subdirs: list[str] = []
        for entry in entries:
            if deadline is not None and clock() > deadline:
                truncated = True
                break
            if max_files is not None and len(files) >= max_files:
                truncated = True
                break

            full = posixpath.join(current, entry.name)
            try:
                if entry.is_dir(follow_symlinks=False):
                    if level < depth and not is_dir_excluded(full, entry.name, exclude):
                        subdirs.append(full)
                    continue
                if not entry.is_file():
                    continue
            except OSError as exc:
                logger.debug("Skipping %s: %s", full, exc)
                continue

            if is_file_excluded(full, entry.name, exclude):
                continue
            rel = posixpath.relpath(full, base)
            if not matches_patterns(rel, entry.name, patterns):
                continue
            if mode == ScanMode.QUICK and compression_suffix(entry.name) is not None:
                continue

            try:
                st = entry.stat()
            except OSError as exc:
                logger.debug("Cannot stat %s: %s", full, exc)
                continue

            sample: tuple[str, ...] = ()
            if mode == ScanMode.FULL:
                sample = read_sample(full, sample_lines)

            files.append(
                CandidateFile(
                    path=full,
                    declared_type=kind_for(full),
                    size_bytes=st.st_size,
                    modified_at=datetime.fromtimestamp(st.st_mtime, tz=UTC),
                    sample=sample,
                )
            )

        if truncated:
            logger.info("Scan of %s truncated after %d files", base, len(files))
            break
        # Reverse so the stack visits sub-directories in name order.
        stack.extend((d, level + 1) for d in reversed(subdirs))

    files.sort(key=lambda f: f.path)
    return ScanResult(
        base_path=base,
        mode=mode,
        files=files,
        truncated=truncated,
        skipped_dirs=skipped_dirs,
    )
