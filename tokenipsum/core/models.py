"""Canonical request/response models shared by all provider adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from tokenipsum.core.tokens import count_argument_tokens, count_tokens
from tokenipsum.core.types import MESSAGE_ROLES, STOP_REASONS


@dataclass(frozen=True, slots=True)
class Message:
    """One conversation turn flattened to plain text."""

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in MESSAGE_ROLES:
            raise ValueError(f"Unsupported message role: {self.role}")


@dataclass(frozen=True, slots=True)
class ToolDef:
    name: str
    schema: Any = None


@dataclass(frozen=True, slots=True)
class CanonicalRequest:
    """Provider-agnostic intent parsed from a native request body."""

    model: str
    messages: tuple[Message, ...]
    tools: tuple[ToolDef, ...] = ()
    stream: bool = False
    max_tokens: int | None = None
    thinking_budget: int | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("CanonicalRequest requires at least one message")

    def user_text(self) -> str:
        return "\n".join(message.content for message in self.messages if message.role == "user")

    def last_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""

    def prompt_tokens(self) -> int:
        return sum(count_tokens(message.content) for message in self.messages)


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCallBlock:
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ThinkingBlock:
    thinking: str
    signature: str


ContentBlock = Union[TextBlock, ToolCallBlock, ThinkingBlock]


def block_tokens(block: ContentBlock) -> int:
    if isinstance(block, TextBlock):
        return count_tokens(block.text)
    if isinstance(block, ThinkingBlock):
        return count_tokens(block.thinking)
    return count_argument_tokens(block.arguments)


@dataclass(frozen=True, slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def __post_init__(self) -> None:
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be non-negative")

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True, slots=True)
class CanonicalResponse:
    """A synthesized completion before provider-specific serialization."""

    id: str
    model: str
    content_blocks: tuple[ContentBlock, ...]
    usage: Usage
    stop_reason: str
    created_at: int = 0

    def __post_init__(self) -> None:
        if self.stop_reason not in STOP_REASONS:
            raise ValueError(f"Unsupported stop reason: {self.stop_reason}")

    def text(self) -> str:
        return "".join(block.text for block in self.content_blocks if isinstance(block, TextBlock))

    def tool_calls(self) -> list[ToolCallBlock]:
        return [block for block in self.content_blocks if isinstance(block, ToolCallBlock)]

    def thinking(self) -> ThinkingBlock | None:
        for block in self.content_blocks:
            if isinstance(block, ThinkingBlock):
                return block
        return None
