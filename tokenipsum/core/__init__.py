"""Canonical model shared by the generator, gate and provider adapters."""

from tokenipsum.core.models import (
    CanonicalRequest,
    CanonicalResponse,
    ContentBlock,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolDef,
    Usage,
    block_tokens,
)
from tokenipsum.core.tokens import count_argument_tokens, count_tokens
from tokenipsum.core.types import (
    ERROR_KINDS,
    PROVIDERS,
    RANDOM_ERROR_KINDS,
    STOP_REASONS,
    ErrorKind,
    ProviderKey,
    StopReason,
)

__all__ = [
    "CanonicalRequest",
    "CanonicalResponse",
    "ContentBlock",
    "ERROR_KINDS",
    "ErrorKind",
    "Message",
    "PROVIDERS",
    "ProviderKey",
    "RANDOM_ERROR_KINDS",
    "STOP_REASONS",
    "StopReason",
    "TextBlock",
    "ThinkingBlock",
    "ToolCallBlock",
    "ToolDef",
    "Usage",
    "block_tokens",
    "count_argument_tokens",
    "count_tokens",
]
