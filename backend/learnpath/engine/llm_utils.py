"""Decoding helpers for reasoning-provider output."""

import json
import re
from collections.abc import Callable
from typing import Any

from learnpath.core.logging import get_logger

logger = get_logger(__name__)

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_FENCED_BLOCK = re.compile(r"```(?:json|javascript|js|text)?\s*\n(.*?)\n\s*```", re.DOTALL | re.IGNORECASE)


def strip_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket."""
    return _TRAILING_COMMA.sub(r"\1", text)


def _loads(text: str) -> Any | None:
    try:
        return json.loads(strip_trailing_commas(text.strip()))
    except ValueError:
        return None


def _fenced(text: str) -> str | None:
    match = _FENCED_BLOCK.search(text)
    return match.group(1) if match else None


def _balanced(text: str) -> str | None:
    """First bracket-balanced object or array in ``text``, ignoring brackets in strings."""
    start = next((i for i, ch in enumerate(text) if ch in "{["), None)
    if start is None:
        return None

    depth = 0
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
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


_STRATEGIES: tuple[tuple[str, Callable[[str], str | None]], ...] = (
    ("direct", lambda text: text),
    ("code_block", _fenced),
    ("substring", _balanced),
)


def parse_llm_json_response(content: str | None) -> dict[str, Any] | list[Any]:
    """Decode JSON from provider text.

    Tries the raw text, then a fenced code block, then the first balanced
    JSON substring. Trailing commas are tolerated by every strategy.

    Raises:
        ValueError: If content is empty or no strategy yields an object or array.
    """
    if not content:
        raise ValueError("Empty LLM response")

    for name, extract in _STRATEGIES:
        candidate = extract(content)
        if not candidate:
            continue
        result = _loads(candidate)
        if isinstance(result, dict | list):
            logger.debug("Parsed provider JSON", strategy=name)
            return result

    logger.error("Failed to parse LLM JSON response", content_preview=content[:200])
    raise ValueError("Failed to parse LLM JSON response: no valid JSON found")
