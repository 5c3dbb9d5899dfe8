"""Decoding of vendor response bodies.

Besides plain JSON some endpoints answer with "tagged JSON", a run of
``name={...}`` segments without any envelope, e.g.
``vehicle={"vin": "..."} status={"doors": "LOCKED"}``.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Tuple

_TAG = re.compile(r"([A-Za-z_][A-Za-z0-9_\-]*)=\s*\{")


class DecodeError(Exception):
    """Raised when a response body is empty or not (tagged) JSON."""


def _balanced_end(text: str, start: int) -> int:
    """Return the index just past the object opening at ``start``."""

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
                return index + 1
    raise DecodeError("Unbalanced braces in tagged response")


def _tagged_segments(text: str) -> List[Tuple[str, str]]:
    segments: List[Tuple[str, str]] = []
    position = 0
    while True:
        match = _TAG.search(text, position)
        if match is None:
            if segments and text[position:].strip():
                raise DecodeError("Unexpected data after tagged segments")
            return segments
        if text[position:match.start()].strip():
            raise DecodeError("Unexpected data around tagged segments")
        start = match.end() - 1
        end = _balanced_end(text, start)
        segments.append((match.group(1), text[start:end]))
        position = end


def decode_body(body: str) -> Any:
    """Decode ``body`` as tagged JSON, falling back to a single document."""

    if body is None or not body.strip():
        raise DecodeError("Empty data received")

    text = body.strip()
    # A document starting with a bracket is plain JSON even if strings inside it look like tags.
    segments = [] if text[0] in "{[" else _tagged_segments(text)
    try:
        if not segments:
            return json.loads(text)
        result: Dict[str, Any] = {}
        for tag, raw in segments:
            result[tag] = json.loads(raw)
        return result
    except json.JSONDecodeError as err:
        raise DecodeError(f"Invalid data received: {err}") from err
