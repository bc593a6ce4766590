"""Rotation-aware path normalization.

``access.log.1.gz`` and ``access.log.20240101`` both collapse to ``access.log``.
Only the file name is rewritten; directories are left alone.
"""

from __future__ import annotations

import posixpath
import re

COMPRESSION_SUFFIXES = (".gz", ".bz2", ".xz")

_COMPRESSION_RE = re.compile(r"\.(?:gz|bz2|xz)$", re.IGNORECASE)
# Covers logrotate numeric (.1) and date-stamped (.20240101) suffixes.
_ROTATION_RE = re.compile(r"\.\d+$")


def compression_suffix(path: str) -> str | None:
    """Return the lower-cased compression suffix of ``path`` or None."""
    m = _COMPRESSION_RE.search(path)
    return m.group(0).lower() if m else None


def _strip_once(name: str) -> str:
    out = _COMPRESSION_RE.sub("", name)
    out = _ROTATION_RE.sub("", out)
    # Never reduce a name to nothing (e.g. a hidden file called ".1").
    return out if out else name


def normalize_name(name: str) -> str:
    """Normalize a bare file name; repeated until stable so the result is idempotent."""
    current = name
    while True:
        nxt = _strip_once(current)
        if nxt == current:
            return current
        current = nxt


def normalize(path: str) -> str:
    """Return the logical path of ``path`` (pure, never raises)."""
    if not path:
        return path
    head, tail = posixpath.split(path)
    if not tail:
        return path
    name = normalize_name(tail)
    if name == tail:
        return path
    return posixpath.join(head, name) if head else name


def is_rotated_variant(path: str) -> bool:
    """True when ``path`` differs from its logical identity."""
    return normalize(path) != path


CRITICAL_BASENAMES = (
    "syslog",
    "messages",
    "auth.log",
    "secure",
    "kern.log",
    "daemon.log",
    "mail.log",
    "maillog",
)


def is_critical(path: str) -> bool:
    """True for well-known critical basenames, also with a ``.`` or ``-`` qualifier."""
    name = posixpath.basename(normalize(path)).lower()
    return any(name == c or name.startswith((c + ".", c + "-")) for c in CRITICAL_BASENAMES)
