"""Error taxonomy for the discovery and parsing engine.

Every engine error carries a stable ``code`` so the tool layer can return it as
structured data. Each class also derives from the closest builtin so existing
``except FileNotFoundError`` / ``except ValueError`` call sites keep working.
"""

from __future__ import annotations

import re
from typing import Any


class LogSourceError(Exception):
    """Base class for engine errors."""

    code = "LogSourceError"

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable description of the error."""
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.path is not None:
            out["path"] = self.path
        return out


class NotFoundError(LogSourceError, FileNotFoundError):
    """Base path or file does not exist."""

    code = "NotFound"


class PermissionDeniedError(LogSourceError, PermissionError):
    """Path exists but cannot be read."""

    code = "PermissionDenied"


class InvalidPatternError(LogSourceError, ValueError):
    """Regex failed to compile. The message includes the compiler diagnostic."""

    code = "InvalidPattern"

    def __init__(self, pattern: str, diagnostic: str) -> None:
        super().__init__(f"Invalid regex pattern: {diagnostic}")
        self.pattern = pattern
        self.diagnostic = diagnostic

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["pattern"] = self.pattern
        out["diagnostic"] = self.diagnostic
        return out


class DetectionUnavailableError(LogSourceError, OSError):
    """Host introspection is not accessible (sandboxed deployment)."""

    code = "DetectionUnavailable"


class UnsupportedCompressionError(LogSourceError):
    """A compressed file was requested while reading compressed files is disabled."""

    code = "UnsupportedCompression"


class StreamInterruptedError(LogSourceError):
    """The followed file disappeared or rotated and could not be reopened."""

    code = "StreamInterrupted"


class UnknownSourceError(LogSourceError, ValueError):
    """Source id is not one of the supported source types."""

    code = "UnknownSource"


class SessionNotFoundError(LogSourceError, KeyError):
    """No stream session with the given id."""

    code = "SessionNotFound"

    def __str__(self) -> str:
        return self.message


def ensure_pattern(pattern: str) -> None:
    """Raise InvalidPatternError when ``pattern`` is not a compilable regex."""
    try:
        re.compile(pattern)
    except re.error as exc:
        raise InvalidPatternError(pattern, str(exc)) from exc
