"""Text scanning helpers shared by the suggestion detectors.

Hides how structured payloads are located inside free-form assistant text:
code fences, balanced JSON objects and generation sentinels.
"""

import re
from collections.abc import Callable

CODE_FENCE = "```"
JSON_FENCE = "```json"

# Flags the backend appends when it is about to generate a payload
SENTINEL_PATTERN = re.compile(r"\[\s*(?:HABIT|TASK)GEN\s*=\s*True\s*\]", re.IGNORECASE)
# A flag whose closing bracket has not arrived yet
PARTIAL_SENTINEL_PATTERN = re.compile(r"\[\s*(?:HABIT|TASK)GEN[^\]]*$", re.IGNORECASE)
BLANK_LINES_PATTERN = re.compile(r"\n{3,}")


def strip_sentinels(text: str) -> str:
    """Remove complete generation flags."""
    return SENTINEL_PATTERN.sub("", text)


def strip_partial_sentinel(text: str) -> str:
    """Remove a generation flag that is still arriving at the end of the text."""
    return PARTIAL_SENTINEL_PATTERN.sub("", text)


def collapse_blank_lines(text: str) -> str:
    return BLANK_LINES_PATTERN.sub("\n\n", text)


def cut_at(text: str, marker: str) -> str | None:
    """Return the text before the first ``marker``, or None if absent."""
    index = text.find(marker)
    if index == -1:
        return None
    return text[:index]


def extract_fenced_block(text: str, opening: str = CODE_FENCE) -> str | None:
    """Return the body of the first fenced block opened by ``opening``.

    Returns None when the opening fence is missing or never closed.
    """
    start = text.find(opening)
    if start == -1:
        return None
    body_start = start + len(opening)
    end = text.find(CODE_FENCE, body_start)
    if end == -1:
        return None
    return text[body_start:end]


def find_balanced_object(text: str, start: int) -> tuple[int, int] | None:
    """Find the JSON object that opens at ``text[start]``.

    Braces inside JSON strings are ignored. Returns ``(start, end)`` with
    ``end`` exclusive, or None when the object is not closed.
    """
    if start < 0 or start >= len(text) or text[start] != "{":
        return None

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
                return start, index + 1
    return None


def enclosing_object(text: str, key_index: int) -> tuple[int, int] | None:
    """Find the balanced object that contains the key at ``key_index``.

    Walks outward from the nearest ``{`` before the key until an object that
    spans the key is found.
    """
    search_end = key_index
    while True:
        brace = text.rfind("{", 0, search_end)
        if brace == -1:
            return None
        span = find_balanced_object(text, brace)
        if span is not None and span[1] > key_index:
            return span
        search_end = brace


def apply_until_stable(clean_once: Callable[[str], str], text: str) -> str:
    """Apply a shrinking cleanup pass until the text stops changing.

    Makes any cleanup idempotent: the result is a fixed point of the pass.
    Every pass either leaves the text unchanged or makes it shorter, so the
    loop terminates.
    """
    current = text
    while True:
        cleaned = clean_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned
