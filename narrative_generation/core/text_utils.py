"""
Text helpers shared by the adapters, the validator and the cache.
"""

import math
import re

from narrative_generation.core.constants import CHARS_PER_TOKEN, THINK_BLOCK_PATTERN

_THINK_BLOCK_RE = re.compile(THINK_BLOCK_PATTERN)
_WHITESPACE_RE = re.compile(r"\s+")


def strip_think_blocks(text: str) -> str:
    """Remove ``<think>...</think>`` reasoning blocks emitted by local models."""
    if not text:
        return ""
    return _THINK_BLOCK_RE.sub("", text).strip()


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace to one space and trim the ends."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 characters per token, rounded up)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
