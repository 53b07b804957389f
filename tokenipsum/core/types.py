"""Type definitions for tokenipsum canonical models."""

from typing import Literal

ProviderKey = Literal["cerebras", "gemini", "claude", "openai"]

PROVIDERS: tuple[str, ...] = (
    "cerebras",
    "gemini",
    "claude",
    "openai",
)

StopReason = Literal["end_turn", "tool_use", "max_tokens"]

STOP_REASONS: tuple[str, ...] = (
    "end_turn",
    "tool_use",
    "max_tokens",
)

ErrorKind = Literal["unauthorized", "rate_limited", "server_error", "timeout"]

ERROR_KINDS: tuple[str, ...] = (
    "unauthorized",
    "rate_limited",
    "server_error",
    "timeout",
)

# Kinds the random error draw may pick; auth failures only come from auth checks.
RANDOM_ERROR_KINDS: tuple[str, ...] = (
    "rate_limited",
    "server_error",
    "timeout",
)

MESSAGE_ROLES: tuple[str, ...] = (
    "system",
    "user",
    "assistant",
    "tool",
)
