"""Shared streaming frame model and text chunking."""

from __future__ import annotations

from dataclasses import dataclass
import json
import re
from typing import Any

DEFAULT_WORDS_PER_CHUNK = 3
DONE_SENTINEL = "[DONE]"

_WORD_WITH_LEADING_SPACE = re.compile(r"\s*\S+")


@dataclass(frozen=True, slots=True)
class Frame:
    """One unit of a provider's incremental-output protocol."""

    data: dict[str, Any] | str
    event: str | None = None


def split_text(text: str, words_per_chunk: int = DEFAULT_WORDS_PER_CHUNK) -> list[str]:
    """Split text into chunks of at most ``words_per_chunk`` words.

    Whitespace stays attached to the word that follows it, so joining the
    chunks reproduces ``text`` exactly.
    """
    if words_per_chunk < 1:
        raise ValueError("words_per_chunk must be >= 1")
    if not text:
        return []
    pieces = _WORD_WITH_LEADING_SPACE.findall(text)
    if not pieces:
        return [text]
    consumed = sum(len(piece) for piece in pieces)
    if consumed < len(text):
        pieces[-1] += text[consumed:]
    return [
        "".join(pieces[index : index + words_per_chunk])
        for index in range(0, len(pieces), words_per_chunk)
    ]


def encode_sse(frame: Frame) -> bytes:
    if isinstance(frame.data, str):
        data = frame.data
    else:
        data = json.dumps(frame.data, ensure_ascii=False, separators=(",", ":"))
    lines = []
    if frame.event is not None:
        lines.append(f"event: {frame.event}")
    lines.append(f"data: {data}")
    return ("\n".join(lines) + "\n\n").encode("utf-8")

