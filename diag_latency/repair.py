"""Truncation-tolerant JSON decoding for exported diagnostic records.

Exporters cut long records mid-write, so a line can end inside a string,
after a dangling property name, or several containers deep. ``repair_parse``
first tries a plain decode and only then runs a bounded repair loop: every
pass closes whatever is still open, and every failed pass peels one more
trailing token before the next attempt. A record with nothing left open
is corrupt rather than cut, and fails at once.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
import re
from typing import Any

import orjson

MAX_REPAIR_ITERATIONS = 10

_TRUNCATION_MARKER_RE = re.compile(r",?\s*(?:\.{3,}|…)\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*$")
_OPENER_FOR = {"}": "{", "]": "["}
_CLOSER_FOR = {"{": "}", "[": "]"}
# A complete \uXXXX escape is six characters long.
_UNICODE_ESCAPE_LEN = 6

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RepairResult:
    value: Any
    was_repaired: bool
    text: str
    attempts: int = 0


@dataclass(frozen=True, slots=True)
class ParseFailure:
    text: str
    attempts: int
    error: str


@dataclass(slots=True)
class _ScanState:
    stack: list[str]
    in_string: bool
    escape_pending: bool
    unicode_escape_at: int | None
    tokens: deque[tuple[str, int]]
    last_delimiter: tuple[str, int] | None


def _scan(text: str) -> _ScanState:
    stack: list[str] = []
    tokens: deque[tuple[str, int]] = deque(maxlen=3)
    in_string = False
    escape_next = False
    unicode_escape_at: int | None = None
    last_delimiter: tuple[str, int] | None = None
    for idx, char in enumerate(text):
        if in_string:
            if escape_next:
                escape_next = False
                if char == "u":
                    unicode_escape_at = idx - 1
                continue
            if char == "\\":
                escape_next = True
                continue
            if char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
            unicode_escape_at = None
            tokens.append(("string", idx))
        elif char == "{" or char == "[":
            stack.append(char)
            tokens.append((char, idx))
            last_delimiter = (char, idx)
        elif char == "}" or char == "]":
            if stack and stack[-1] == _OPENER_FOR[char]:
                stack.pop()
            tokens.append(("close", idx))
        elif char == "," or char == ":":
            tokens.append((char, idx))
            last_delimiter = (char, idx)
        elif not char.isspace():
            if not tokens or tokens[-1][0] != "value":
                tokens.append(("value", idx))
    return _ScanState(
        stack=stack,
        in_string=in_string,
        escape_pending=escape_next,
        unicode_escape_at=unicode_escape_at,
        tokens=tokens,
        last_delimiter=last_delimiter,
    )


def _strip_trailing_markers(text: str) -> str:
    text = _TRUNCATION_MARKER_RE.sub("", text)
    text = _TRAILING_COMMA_RE.sub("", text)
    return text.rstrip()


def _dangling_property_cut(state: _ScanState) -> int | None:
    tokens = list(state.tokens)
    if len(tokens) >= 2 and tokens[-1][0] == ":" and tokens[-2][0] == "string":
        # "key": with no value
        if len(tokens) == 3 and tokens[0][0] == ",":
            return tokens[0][1]
        return tokens[-2][1]
    if tokens and tokens[-1][0] == "string" and state.stack and state.stack[-1] == "{":
        # bare "key inside an object
        if len(tokens) < 2:
            return None
        before_kind, before_idx = tokens[-2]
        if before_kind == ",":
            return before_idx
        if before_kind == "{":
            return tokens[-1][1]
    return None


def repair_json(text: str) -> str:
    """Run one repair pass: close the open string and every open container."""
    text = _strip_trailing_markers(text)
    state = _scan(text)
    if state.in_string:
        if state.escape_pending:
            text = text[:-1]
        elif (
            state.unicode_escape_at is not None
            and len(text) - state.unicode_escape_at < _UNICODE_ESCAPE_LEN
        ):
            text = text[: state.unicode_escape_at]
        text += '"'
    cut = _dangling_property_cut(state)
    if cut is not None:
        text = text[:cut].rstrip()
    closers = "".join(_CLOSER_FOR[opener] for opener in reversed(state.stack))
    return text + closers


def _peel_last_token(text: str) -> str:
    state = _scan(text)
    if state.last_delimiter is None:
        return ""
    kind, idx = state.last_delimiter
    if kind == ",":
        return text[:idx]
    return text[: idx + 1]


def repair_parse(raw: str | bytes) -> RepairResult | ParseFailure:
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    text = raw.strip()
    if not text:
        return ParseFailure(text=raw, attempts=0, error="empty record")
    try:
        return RepairResult(value=orjson.loads(text), was_repaired=False, text=text)
    except orjson.JSONDecodeError as exc:
        error = str(exc)

    working = text
    for attempt in range(1, MAX_REPAIR_ITERATIONS + 1):
        candidate = repair_json(working)
        if candidate:
            try:
                value = orjson.loads(candidate)
            except orjson.JSONDecodeError as exc:
                error = str(exc)
            else:
                logger.debug("repaired record after %d attempt(s)", attempt)
                return RepairResult(
                    value=value, was_repaired=True, text=candidate, attempts=attempt
                )
        stripped = _strip_trailing_markers(working)
        state = _scan(stripped)
        if not state.stack and not state.in_string:
            # nothing left open: the record is corrupt, not cut short
            logger.debug("record is not truncated, giving up: %s", error)
            return ParseFailure(text=text, attempts=attempt, error=error)
        peeled = _peel_last_token(stripped)
        if not peeled or peeled == working:
            logger.debug("repair gave up after %d attempt(s): %s", attempt, error)
            return ParseFailure(text=text, attempts=attempt, error=error)
        working = peeled
    logger.debug("repair gave up after %d attempts: %s", MAX_REPAIR_ITERATIONS, error)
    return ParseFailure(text=text, attempts=MAX_REPAIR_ITERATIONS, error=error)
