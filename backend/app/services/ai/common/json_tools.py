"""Lenient JSON recovery for model output.

Vision models wrap their JSON in Markdown fences, prepend a sentence of
prose or trail off with an apology.  ``extract_json`` peels those layers
off and returns the first JSON object or array it can parse.
"""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?")
_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences (```json ... ```) and surrounding whitespace.

    Only the fence markers are removed; the content between them is untouched.
    """
    if not text:
        return ""
    return _FENCE_RE.sub("", text).strip()


def _balanced_end(text: str, start: int) -> int | None:
    """Index one past the bracket that closes ``text[start]``, or ``None``.

    Brackets inside string literals are ignored; a mismatched closer ends the
    scan early.
    """
    stack: list[str] = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i + 1
    return None


def extract_json(text: str) -> dict | list | None:
    """Return the first JSON object or array found in *text*.

    Fences are stripped first and the whole remainder is tried as-is; after
    that every ``{`` / ``[`` is tried as the start of a balanced fragment.
    ``None`` when nothing parses.
    """
    stripped = strip_code_fences(text or "")
    if not stripped:
        return None

    try:
        return json.loads(stripped)
    except ValueError:
        pass

    start = 0
    while True:
        positions = [p for p in (stripped.find("{", start), stripped.find("[", start)) if p != -1]
        if not positions:
            return None
        start = min(positions)
        end = _balanced_end(stripped, start)
        if end is not None:
            try:
                return json.loads(stripped[start:end])
            except ValueError:
                logger.debug("Discarding unparsable JSON fragment at offset %d", start)
        start += 1
