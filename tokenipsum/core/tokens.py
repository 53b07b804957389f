"""Word-based token accounting shared by the generator and adapters."""

from __future__ import annotations

import json
from typing import Any

# One whitespace-separated word counts as one token.
TOKENS_PER_WORD = 1


def count_tokens(text: str | None) -> int:
    if not text:
        return 0
    return len(text.split()) * TOKENS_PER_WORD


def count_argument_tokens(arguments: dict[str, Any]) -> int:
    """Count tokens of tool-call arguments in their JSON-encoded form."""
    return count_tokens(json.dumps(arguments, ensure_ascii=False, sort_keys=True))
