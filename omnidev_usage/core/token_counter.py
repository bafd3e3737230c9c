"""
Token counting and usage tracking.

Manages token calculations for chat requests and responses.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

# Rough average for English text across the supported providers
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate the token count of a piece of text.

    This is a character-count heuristic, not a tokenizer: one token per
    four characters, rounded up. An exact tokenizer can replace it as long
    as the empty string still maps to 0.

    Args:
        text: Text to estimate (``None`` is treated as empty)

    Returns:
        Non-negative estimated token count
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(messages: Iterable[Mapping[str, object]]) -> int:
    """Estimate prompt tokens for a list of chat messages.

    Only string ``content`` fields are counted.
    """
    total = 0
    for message in messages:
        content = message.get("content")
        if isinstance(content, str):
            total += estimate_tokens(content)
    return total
