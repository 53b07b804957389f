"""Provider adapter registry and request routing."""

from __future__ import annotations

from dataclasses import dataclass

from tokenipsum.core.types import PROVIDERS
from tokenipsum.providers.base import ProviderAdapter
from tokenipsum.providers.chat import ChatCompletionsAdapter
from tokenipsum.providers.claude import ClaudeAdapter
from tokenipsum.providers.exceptions import ProviderRegistryError
from tokenipsum.providers.gemini import GEMINI_ACTIONS, GeminiAdapter, split_model_action
from tokenipsum.providers.responses import ResponsesAdapter

_PROVIDER_REGISTRY: dict[str, type[ProviderAdapter]] = {
    "cerebras": ChatCompletionsAdapter,
    "gemini": GeminiAdapter,
    "claude": ClaudeAdapter,
    "openai": ResponsesAdapter,
}

_STATIC_ROUTES = {
    "/v1/chat/completions": "cerebras",
    "/v1/messages": "claude",
    "/v1/responses": "openai",
}
_GEMINI_PREFIX = "/v1beta/models/"


@dataclass(frozen=True, slots=True)
class Route:
    """A matched endpoint.

    ``stream`` is ``None`` when the body's own ``stream`` flag decides, and a
    bool when the path fixes the mode (Gemini actions).
    """

    provider: str
    model: str | None = None
    stream: bool | None = None


def get_provider_adapter(key: str) -> ProviderAdapter:
    normalized_key = key.strip().lower()
    if normalized_key not in _PROVIDER_REGISTRY:
        raise ProviderRegistryError(f"Provider '{normalized_key}' is not registered.")
    return _PROVIDER_REGISTRY[normalized_key]()


def list_provider_adapter_keys() -> tuple[str, ...]:
    return PROVIDERS


def detect_route(path: str) -> Route | None:
    """Map a request path (query string removed) to a provider route."""
    path = path.rstrip("/") or "/"
    provider = _STATIC_ROUTES.get(path)
    if provider is not None:
        return Route(provider=provider)

    if not path.startswith(_GEMINI_PREFIX):
        return None
    split = split_model_action(path[len(_GEMINI_PREFIX):])
    if split is None:
        return None
    model, action = split
    if "/" in model or action not in GEMINI_ACTIONS:
        return None
    return Route(provider="gemini", model=model, stream=action == "streamGenerateContent")
