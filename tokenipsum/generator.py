"""Synthetic content generation for fake completions."""

from __future__ import annotations

import base64
from dataclasses import dataclass
import random
import re
import time
from typing import Any, Callable

from tokenipsum.core.models import (
    CanonicalRequest,
    CanonicalResponse,
    ContentBlock,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    Usage,
    block_tokens,
)

WORDS: tuple[str, ...] = (
    "the", "be", "to", "of", "and", "a", "in", "that", "have", "I",
    "it", "for", "not", "on", "with", "he", "as", "you", "do", "at",
    "this", "but", "his", "by", "from", "they", "we", "say", "her", "she",
    "or", "an", "will", "my", "one", "all", "would", "there", "their", "what",
    "so", "up", "out", "if", "about", "who", "get", "which", "go", "me",
    "when", "make", "can", "like", "time", "no", "just", "him", "know", "take",
    "people", "into", "year", "your", "good", "some", "could", "them", "see", "other",
    "than", "then", "now", "look", "only", "come", "its", "over", "think", "also",
    "AI", "model", "neural", "network", "learning", "data", "training", "inference", "token",
    "embedding", "transformer", "attention", "layer", "output", "input", "parameter",
    "weight", "gradient", "optimization", "loss", "accuracy", "batch",
)

TRIGGER_KEYWORDS: tuple[str, ...] = ("weather", "search", "calculate", "find", "what is")

TEXT_TARGET_WORDS = 48
MAX_THINKING_WORDS = 96
THINKING_BUDGET_DIVISOR = 16
SENTENCE_MIN_WORDS = 5
SENTENCE_MAX_WORDS = 14

_ARGUMENT_KEYS = {
    "weather": "location",
    "search": "query",
    "find": "query",
    "what is": "query",
    "calculate": "expression",
}
_EDGE_PUNCTUATION = re.compile(r"^[^\w]+|[^\w]+$")


def detect_trigger(text: str) -> str | None:
    """Return the first trigger keyword (in priority order) present in text."""
    lowered = text.lower()
    for keyword in TRIGGER_KEYWORDS:
        if keyword in lowered:
            return keyword
    return None


def last_significant_word(text: str) -> str | None:
    for word in reversed(text.split()):
        if len(word) <= 2:
            continue
        stripped = _EDGE_PUNCTUATION.sub("", word)
        if stripped:
            return stripped
    return None


def build_tool_arguments(keyword: str, message: str) -> dict[str, Any]:
    """Placeholder arguments keyed by the trigger keyword."""
    key = _ARGUMENT_KEYS[keyword]
    fallback = last_significant_word(message) or "unknown"
    if keyword == "weather":
        return {key: fallback}

    match = re.search(re.escape(keyword), message, re.IGNORECASE)
    tail = message[match.end():] if match else ""
    value = _EDGE_PUNCTUATION.sub("", tail.strip())
    return {key: value or fallback}


def make_id(rng: random.Random, sequence: int = 0) -> str:
    return f"{sequence:06d}{rng.getrandbits(48):012x}"


def make_signature(rng: random.Random) -> str:
    return base64.b64encode(rng.randbytes(48)).decode("ascii")


@dataclass(slots=True)
class ContentGenerator:
    """Generate canonical responses from canonical requests.

    All randomness comes from the ``rng`` passed to :meth:`generate`, so a fixed
    seed reproduces the same content and ids for the same request.
    """

    text_words: int = TEXT_TARGET_WORDS
    clock: Callable[[], float] = time.time

    def generate(
        self,
        request: CanonicalRequest,
        *,
        rng: random.Random,
        sequence: int = 0,
    ) -> CanonicalResponse:
        response_id = make_id(rng, sequence)
        blocks: list[ContentBlock] = []

        if request.thinking_budget:
            blocks.append(self._thinking_block(request.thinking_budget, rng))

        keyword = detect_trigger(request.user_text())
        if keyword is not None and request.tools:
            tool = request.tools[0]
            blocks.append(
                ToolCallBlock(
                    id=make_id(rng, sequence),
                    name=tool.name,
                    arguments=build_tool_arguments(keyword, request.last_user_message()),
                )
            )
            stop_reason = "tool_use"
        else:
            text, truncated = self._text(rng, limit=request.max_tokens)
            blocks.append(TextBlock(text=text))
            stop_reason = "max_tokens" if truncated else "end_turn"

        usage = Usage(
            prompt_tokens=request.prompt_tokens(),
            completion_tokens=sum(block_tokens(block) for block in blocks),
        )
        return CanonicalResponse(
            id=response_id,
            model=request.model,
            content_blocks=tuple(blocks),
            usage=usage,
            stop_reason=stop_reason,
            created_at=int(self.clock()),
        )

    def words(self, rng: random.Random, count: int) -> list[str]:
        return [rng.choice(WORDS) for _ in range(count)]

    def sentences(self, rng: random.Random, count: int) -> str:
        """Exactly ``count`` words grouped into capitalized, period-terminated sentences."""
        sentences: list[str] = []
        remaining = count
        while remaining > 0:
            size = min(remaining, rng.randint(SENTENCE_MIN_WORDS, SENTENCE_MAX_WORDS))
            words = self.words(rng, size)
            words[0] = words[0][:1].upper() + words[0][1:]
            sentences.append(" ".join(words) + ".")
            remaining -= size
        return " ".join(sentences)

    def _text(self, rng: random.Random, *, limit: int | None) -> tuple[str, bool]:
        text = self.sentences(rng, self.text_words)
        if limit is not None and limit < self.text_words:
            return " ".join(text.split()[:limit]), True
        return text, False

    def _thinking_block(self, budget: int, rng: random.Random) -> ThinkingBlock:
        size = min(MAX_THINKING_WORDS, max(1, budget // THINKING_BUDGET_DIVISOR), budget)
        thinking = self.sentences(rng, size)
        return ThinkingBlock(thinking=thinking, signature=make_signature(rng))
