"""Signal grammar: detects marker blocks in model text and extracts their JSON payload.

A signal looks like::

    GENERATE_ACTIONS
    ---
    {"title": "Write the intro", "priority": "high"}

The marker must start a line of the trimmed text and be followed by a ``---``
line. The payload is the first JSON object found in the text. Parsing never
raises: failures come back as ``{"error": ...}`` payloads so the caller can
still report them on the terminal event.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum

from chatstream.schemas import Signal

logger = logging.getLogger(__name__)

NO_JSON_FOUND = "No JSON found"
INVALID_JSON = "Invalid JSON"


class SignalKind(str, Enum):
    GENERATE_ACTIONS = "GENERATE_ACTIONS"    # schedule an action
    GENERATE_ASSET = "GENERATE_ASSET"        # immediate deliverable
    STORE_MEASUREMENT = "STORE_MEASUREMENT"  # measurement check-in
    READY_TO_PRACTICE = "READY_TO_PRACTICE"  # practice session can start
    SAVE_MOMENT = "SAVE_MOMENT"              # capture a relationship moment
    SEND_REPLY = "SEND_REPLY"                # reply to a partner's moment


@dataclass(frozen=True)
class SignalPattern:
    kind: SignalKind
    regex: re.Pattern

    @classmethod
    def for_kind(cls, kind: SignalKind) -> SignalPattern:
        return cls(kind=kind, regex=re.compile(rf"^{re.escape(kind.value)}\s*\n---", re.MULTILINE))

    def matches(self, text: str) -> bool:
        return self.regex.search(text.strip()) is not None


def detect(text: str, patterns: list[SignalPattern] | tuple[SignalPattern, ...]) -> bool:
    """Return True if any pattern matches the text."""
    return any(p.matches(text) for p in patterns)


def parse(
    text: str, patterns: list[SignalPattern] | tuple[SignalPattern, ...]
) -> Signal | None:
    """Return the signal for the first matching pattern, or None.

    Patterns are tried in configured order and the first match wins.
    """
    for pattern in patterns:
        if not pattern.matches(text):
            continue

        span = extract_json_span(text)
        if span is None:
            logger.warning(f"Signal {pattern.kind.value} has no JSON payload")
            return Signal(type=pattern.kind.value, data={"error": NO_JSON_FOUND})

        try:
            data = json.loads(span)
        except json.JSONDecodeError as e:
            logger.warning(f"Signal {pattern.kind.value} payload is not valid JSON: {e}")
            return Signal(type=pattern.kind.value, data={"error": INVALID_JSON, "raw": span})

        if not isinstance(data, dict):
            return Signal(type=pattern.kind.value, data={"error": INVALID_JSON, "raw": span})

        return Signal(type=pattern.kind.value, data=data)

    return None


def find_json_start(text: str) -> int:
    """Offset of the ``{`` opening the first line whose trimmed content starts with ``{``.

    Returns -1 if there is no such line.
    """
    offset = 0
    for line in text.splitlines(keepends=True):
        stripped = line.lstrip()
        if stripped.startswith("{"):
            return offset + (len(line) - len(stripped))
        offset += len(line)
    return -1


def extract_json_span(text: str) -> str | None:
    """Return the balanced ``{...}`` span starting at the first JSON line.

    Braces inside string literals (including escaped quotes) are ignored.
    An object that never closes yields the rest of the text.
    """
    start = find_json_start(text)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return text[start:].rstrip()
