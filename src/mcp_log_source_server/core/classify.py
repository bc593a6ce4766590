"""Partition discovered files into systemCritical / rotationManaged / autoDetected / custom."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from functools import lru_cache

from .models import (
    Category,
    CandidateFile,
    Classification,
    LogicalFile,
    LogKind,
    Resolution,
    RotationPolicy,
)
from .normalize import is_critical, normalize
from .regex_suggest import suggest
from .rotation import rotation_entry_for
from .settings import ManualLogFile
from .sources import SourceProfile

logger = logging.getLogger(__name__)

Resolver = Callable[[str, LogKind], Resolution]


@lru_cache(maxsize=256)
def _compiled(regex: str) -> re.Pattern[str] | None:
    try:
        return re.compile(regex)
    except re.error:
        return None


def matches_sample(regex: str, sample: Iterable[str]) -> bool:
    """True when ``regex`` matches at least one sample line."""
    pattern = _compiled(regex) if regex else None
    if pattern is None:
        return False
    return any(pattern.search(line) for line in sample)


def group_by_logical_path(files: Iterable[CandidateFile]) -> dict[str, list[CandidateFile]]:
    groups: dict[str, list[CandidateFile]] = {}
    for f in files:
        groups.setdefault(normalize(f.path), []).append(f)
    return groups


def _sample_of(members: list[CandidateFile], logical_path: str) -> tuple[str, ...]:
    ordered = sorted(members, key=lambda m: (m.path != logical_path, m.compressed, -m.modified_at.timestamp()))
    for m in ordered:
        if m.sample:
            return m.sample
    return ()


def _kind_from_sample(profile: SourceProfile, declared: LogKind, path: str, sample: tuple[str, ...]) -> LogKind | None:
    """First profile kind whose default regex matches a sample line."""
    for kind in profile.candidate_kinds(declared):
        if matches_sample(profile.default_regex(kind, path), sample):
            return kind
    return None


def _logical_file(
    logical_path: str,
    kind: LogKind,
    category: Category,
    resolution: Resolution,
    members: list[CandidateFile],
    *,
    regex: str | None = None,
) -> LogicalFile:
    return LogicalFile(
        logical_path=logical_path,
        log_type=kind,
        category=category,
        effective_regex=resolution.regex if regex is None else regex,
        is_override=resolution.is_override,
        default_regex=resolution.default_regex,
        members=tuple(sorted(members, key=lambda m: m.path)),
    )


def classify_one(
    logical_path: str,
    members: list[CandidateFile],
    *,
    profile: SourceProfile,
    resolve: Resolver,
    rotation: RotationPolicy,
    host_root: str = "/",
    manual: ManualLogFile | None = None,
) -> LogicalFile:
    """Apply the category precedence to one logical file."""
    declared = manual.kind if manual is not None else members[0].declared_type
    sample = _sample_of(members, logical_path)
    resolution = resolve(logical_path, declared)
    kind = declared

    # Refine the kind from content when nothing is configured for the declared one.
    if not resolution.is_override and sample and not matches_sample(resolution.regex, sample):
        sampled = _kind_from_sample(profile, declared, logical_path, sample)
        if sampled is not None and sampled != declared:
            kind = sampled
            resolution = resolve(logical_path, kind)

    if is_critical(logical_path):
        return _logical_file(logical_path, kind, Category.SYSTEM_CRITICAL, resolution, members)

    if rotation_entry_for(rotation, logical_path, host_root) is not None:
        return _logical_file(logical_path, kind, Category.ROTATION_MANAGED, resolution, members)

    if resolution.is_override:
        # Overridden files are user-owned; no automatic detection or suggestion.
        return _logical_file(logical_path, kind, Category.CUSTOM, resolution, members)

    if manual is not None and manual.enabled:
        if resolution.regex and (not sample or matches_sample(resolution.regex, sample)):
            return _logical_file(logical_path, kind, Category.AUTO_DETECTED, resolution, members)
        if sample:
            try:
                suggestion = suggest(sample[0])
            except ValueError as exc:
                logger.debug("No suggestion for %s: %s", logical_path, exc)
            else:
                if matches_sample(suggestion.regex, sample):
                    return _logical_file(
                        logical_path,
                        kind,
                        Category.AUTO_DETECTED,
                        resolution,
                        members,
                        regex=suggestion.regex,
                    )
        return _logical_file(logical_path, kind, Category.CUSTOM, resolution, members)

    if sample:
        category = Category.AUTO_DETECTED if matches_sample(resolution.regex, sample) else Category.CUSTOM
    else:
        # Quick scans carry no content; trust the name-derived kind.
        category = Category.AUTO_DETECTED if resolution.regex else Category.CUSTOM
    return _logical_file(logical_path, kind, category, resolution, members)


def classify(
    files: Iterable[CandidateFile],
    *,
    profile: SourceProfile,
    resolve: Resolver,
    rotation: RotationPolicy,
    host_root: str = "/",
    manual: Mapping[str, ManualLogFile] | None = None,
) -> Classification:
    """Partition ``files`` by logical path. Every logical file lands in exactly one bucket."""
    manual = manual or {}
    out = Classification()
    for logical_path, members in sorted(group_by_logical_path(files).items()):
        entry = manual.get(logical_path)
        if entry is None:
            entry = next((manual[m.path] for m in members if m.path in manual), None)
        lf = classify_one(
            logical_path,
            members,
            profile=profile,
            resolve=resolve,
            rotation=rotation,
            host_root=host_root,
            manual=entry,
        )
        out.bucket(lf.category).append(lf)
    return out
