"""Helpers for pulling structured data and code out of LLM responses."""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Tried in order; the first candidate that parses wins
_JSON_PATTERNS = [
    re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
    re.compile(r"(\{[\s\S]*\})"),
    re.compile(r"(\[[\s\S]*\])"),
]

_LEADING_FENCE = re.compile(r"^\s*```[\w+-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?```\s*$")
_FENCED_BLOCK = re.compile(r"```[\w+-]*[ \t]*\n([\s\S]*?)```")


def extract_json(text: Optional[str]) -> Optional[Any]:
    """Parse the first JSON document found in ``text``.

    Handles fenced ```json blocks, bare fences, and objects or arrays
    surrounded by prose. Returns None when nothing parses.
    """
    if not text:
        return None

    for pattern in _JSON_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        candidate = match.group(1).strip()
        try:
            return json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue

    try:
        return json.loads(text.strip())
    except (json.JSONDecodeError, TypeError):
        logger.debug(f"No JSON found in response ({len(text)} chars)")
        return None


def strip_code_fences(text: Optional[str]) -> str:
    """Remove markdown code fences around generated code.

    When the response opens with prose and contains a fenced block, the
    first fenced block is returned.
    """
    if not text:
        return ""
    stripped = text.strip()
    if not stripped.startswith("```"):
        block = _FENCED_BLOCK.search(stripped)
        if block:
            return block.group(1).strip()
    stripped = _LEADING_FENCE.sub("", stripped, count=1)
    stripped = _TRAILING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def truncate(text: Optional[str], limit: int) -> str:
    """Cut ``text`` to at most ``limit`` characters."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit]


__all__ = ['extract_json', 'strip_code_fences', 'truncate']
