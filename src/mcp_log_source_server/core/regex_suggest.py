"""Suggest a parsing regex from one sample line.

The line is consumed left to right. At each position the recognizers below are
tried in order; each must end at whitespace or end of line. Recognized tokens
become named groups (or escaped literals for separators such as ``-``), joined
by ``\\s+``. The first unrecognized token starts the trailing ``message`` group.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MESSAGE_ONLY_REGEX = r"^\s*(?P<message>.*?)\s*$"
_MESSAGE_TAIL = r"(?:\s+(?P<message>.*?))?\s*$"

_END = r"(?=\s|$)"
_LEVELS = r"EMERG|EMERGENCY|ALERT|CRIT|CRITICAL|FATAL|ERR|ERROR|WARN|WARNING|NOTICE|INFO|DEBUG|TRACE"

_QUOTED_BODY = r'(?:[^"\\]|\\.)*'


@dataclass(frozen=True, slots=True)
class Suggestion:
    regex: str
    named_groups: list[str]
    test_match: dict[str, str | None] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {"regex": self.regex, "namedGroups": self.named_groups, "testMatch": self.test_match}


@dataclass(frozen=True, slots=True)
class _Token:
    name: str | None  # None for a literal separator
    fragment: str  # regex fragment; group names are written as (?P@name@ until rendered
    text: str


@dataclass
class _State:
    previous: str | None = None  # base name of the last recognized group
    seen: set[str] = field(default_factory=set)


_Recognizer = Callable[[re.Match[str], _State], _Token | None]


def _group(name: str, body: str) -> str:
    return "(?P@%s@%s)" % (name, body)


def _timestamp(fragment: str) -> _Recognizer:
    def build(m: re.Match[str], _s: _State) -> _Token:
        return _Token("timestamp", fragment, m.group(0))

    return build


def _request(m: re.Match[str], _s: _State) -> _Token:
    frag = (
        '"' + _group("method", "[A-Z]+") + r"\s+" + _group("path", r"\S+")
        + r"(?:\s+" + _group("protocol", '[^"]*') + ')?"'
    )
    return _Token("request", frag, m.group(0))


def _ip(m: re.Match[str], _s: _State) -> _Token | None:
    text = m.group(0)
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return None
    body = r"\d{1,3}(?:\.\d{1,3}){3}" if "." in text and ":" not in text else r"[0-9A-Fa-f:.]+"
    return _Token("ip", _group("ip", body), text)


def _bracket_level(m: re.Match[str], _s: _State) -> _Token:
    return _Token("level", r"\[" + _group("level", r"[^\]]+") + r"\]", m.group(0))


def _bare_level(m: re.Match[str], _s: _State) -> _Token:
    suffix = re.escape(m.group("colon") or "")
    return _Token("level", _group("level", "[A-Z]+") + suffix, m.group(0))


def _number(m: re.Match[str], s: _State) -> _Token | None:
    text = m.group(0)
    if s.previous == "status":
        return _Token("size", _group("size", r"\d+|-"), text)
    if text != "-" and "status" not in s.seen and len(text) == 3 and 100 <= int(text) <= 599:
        return _Token("status", _group("status", r"\d{3}"), text)
    return None


def _quoted(m: re.Match[str], s: _State) -> _Token:
    text = m.group(0)
    inner = text[1:-1]
    if s.previous == "size" and "referer" not in s.seen:
        name = "referer"
    elif s.previous == "referer" or "Mozilla/" in inner or re.match(r"^[\w.-]+/[\w.]+", inner):
        name = "user_agent"
    else:
        name = "quoted"
    return _Token(name, '"' + _group(name, _QUOTED_BODY) + '"', text)


def _literal(m: re.Match[str], _s: _State) -> _Token:
    return _Token(None, re.escape(m.group(0)), m.group(0))


_RECOGNIZERS: list[tuple[re.Pattern[str], _Recognizer]] = [
    (
        re.compile(r"\[(?=[^\]]*\d{1,2}:\d{2}:\d{2})[^\]]+\]" + _END),
        _timestamp(r"\[" + _group("timestamp", r"[^\]]+") + r"\]"),
    ),
    (
        re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?" + _END),
        _timestamp(_group("timestamp", r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?")),
    ),
    (
        re.compile(r"\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2}" + _END),
        _timestamp(_group("timestamp", r"\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2}")),
    ),
    (
        re.compile(r"[A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}" + _END),
        _timestamp(_group("timestamp", r"[A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}")),
    ),
    (re.compile(r'"[A-Z]+\s+\S+(?:\s+[^"]*)?"' + _END), _request),
    (re.compile(r"[0-9A-Fa-f:.]*[:.][0-9A-Fa-f:.]+" + _END), _ip),
    (re.compile(r"\[(?:\w+:)?(?:" + _LEVELS + r")\]" + _END, re.IGNORECASE), _bracket_level),
    (re.compile(r"(?:" + _LEVELS + r")(?P<colon>:?)" + _END), _bare_level),
    (re.compile(r"\d+" + _END + r"|-" + _END), _number),
    (re.compile(r'"' + _QUOTED_BODY + r'"' + _END), _quoted),
    (re.compile(r"[^\w\s\"\[\]]{1,3}" + _END), _literal),
]

_SPACE_RE = re.compile(r"\s+")


def _tokenize(line: str) -> list[_Token]:
    tokens: list[_Token] = []
    state = _State()
    pos = 0
    ws = _SPACE_RE.match(line, pos)
    if ws:
        pos = ws.end()
    while pos < len(line):
        token = None
        for pattern, build in _RECOGNIZERS:
            m = pattern.match(line, pos)
            if not m:
                continue
            token = build(m, state)
            if token is not None:
                pos = m.end()
                break
        if token is None:
            break
        tokens.append(token)
        if token.name is not None:
            state.previous = token.name
            state.seen.add(token.name)
        ws = _SPACE_RE.match(line, pos)
        if ws:
            pos = ws.end()
    return tokens


def _render(tokens: list[_Token]) -> tuple[str, list[str]]:
    """Assemble the regex, giving repeated group names a numeric suffix."""
    used: dict[str, int] = {}
    names: list[str] = []
    parts: list[str] = []

    def unique(base: str) -> str:
        used[base] = used.get(base, 0) + 1
        name = base if used[base] == 1 else f"{base}_{used[base]}"
        names.append(name)
        return name

    for t in tokens:
        fragment = t.fragment
        for base in re.findall(r"\(\?P@(\w+)@", fragment):
            fragment = fragment.replace("(?P@%s@" % base, "(?P<%s>" % unique(base), 1)
        parts.append(fragment)

    names.append("message")
    return r"^\s*" + r"\s+".join(parts) + _MESSAGE_TAIL, names


def _verify(regex: str, line: str, names: list[str]) -> dict[str, str | None] | None:
    try:
        m = re.match(regex, line)
    except re.error as exc:
        logger.error("Generated regex does not compile: %s", exc)
        return None
    if m is None:
        return None
    groups = m.groupdict()
    # Only optional sub-parts (protocol, message) may be absent.
    for name in names:
        if groups.get(name) is None and not name.startswith(("protocol", "message")):
            return None
    return groups


def suggest(sample_line: str) -> Suggestion:
    """Build a regex with named groups from one sample line.

    The result always matches ``sample_line``. Raises ValueError for a blank
    line or for text that still spans several lines once the trailing line
    break is dropped.
    """
    line = sample_line.rstrip("\r\n")
    if not line.strip():
        raise ValueError("Sample line is empty")
    if "\n" in line or "\r" in line:
        raise ValueError("Sample must be a single line")

    tokens = _tokenize(line)
    if tokens:
        regex, names = _render(tokens)
        groups = _verify(regex, line, names)
        if groups is not None:
            return Suggestion(regex=regex, named_groups=names, test_match=groups)
        logger.error("Suggested regex failed to match its own sample; falling back to message-only")

    m = re.match(MESSAGE_ONLY_REGEX, line)
    return Suggestion(
        regex=MESSAGE_ONLY_REGEX,
        named_groups=["message"],
        test_match=m.groupdict() if m else {"message": line},
    )
