"""Provider wire-format adapters."""

from tokenipsum.providers.base import ErrorPayload, ProviderAdapter
from tokenipsum.providers.chat import ChatCompletionsAdapter
from tokenipsum.providers.claude import ClaudeAdapter
from tokenipsum.providers.exceptions import (
    MalformedRequestError,
    ProviderError,
    ProviderRegistryError,
)
from tokenipsum.providers.gemini import GeminiAdapter
from tokenipsum.providers.registry import (
    Route,
    detect_route,
    get_provider_adapter,
    list_provider_adapter_keys,
)
from tokenipsum.providers.responses import ResponsesAdapter

__all__ = [
    "ChatCompletionsAdapter",
    "ClaudeAdapter",
    "ErrorPayload",
    "GeminiAdapter",
    "MalformedRequestError",
    "ProviderAdapter",
    "ProviderError",
    "ProviderRegistryError",
    "ResponsesAdapter",
    "Route",
    "detect_route",
    "get_provider_adapter",
    "list_provider_adapter_keys",
]
