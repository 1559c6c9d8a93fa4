"""Cheap token estimation used for context budget decisions."""

from __future__ import annotations

import math
from collections.abc import Iterable

CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    """Approximate the token count of ``text``.

    Roughly four characters per token, but never fewer tokens than
    whitespace-separated words.
    """
    if not text:
        return 0
    by_chars = math.ceil(len(text) / CHARS_PER_TOKEN)
    by_words = len(text.split())
    return max(by_chars, by_words)


def estimate_messages_tokens(contents: Iterable[str]) -> int:
    return sum(estimate_token_count(content) for content in contents)
