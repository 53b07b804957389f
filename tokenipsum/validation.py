"""Compare emulated response shapes with real provider responses."""

from __future__ import annotations

from dataclasses import dataclass
import copy
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class SampleRequest:
    path: str
    body: dict[str, Any]
    model: str
    api_key_env: str
    auth_header: str = "authorization"
    extra_headers: tuple[tuple[str, str], ...] = ()

    def path_for(self, model: str | None = None) -> str:
        return self.path.format(model=model or self.model)

    def body_for(self, model: str | None = None) -> dict[str, Any]:
        body = copy.deepcopy(self.body)
        if "model" in body:
            body["model"] = model or self.model
        return body


SAMPLE_REQUESTS: dict[str, SampleRequest] = {
    "cerebras": SampleRequest(
        path="/v1/chat/completions",
        body={
            "model": "llama-3.3-70b",
            "messages": [{"role": "user", "content": "Say hi"}],
            "max_tokens": 10,
        },
        model="llama-3.3-70b",
        api_key_env="CEREBRAS_API_KEY",
    ),
    "gemini": SampleRequest(
        path="/v1beta/models/{model}:generateContent",
        body={
            "contents": [{"role": "user", "parts": [{"text": "Say hi"}]}],
            "generationConfig": {"maxOutputTokens": 10},
        },
        model="gemini-2.0-flash",
        api_key_env="GEMINI_API_KEY",
        auth_header="x-goog-api-key",
    ),
    "claude": SampleRequest(
        path="/v1/messages",
        body={
            "model": "claude-haiku-4-5-20251001",
            "max_tokens": 10,
            "messages": [{"role": "user", "content": "Say hi"}],
        },
        model="claude-haiku-4-5-20251001",
        api_key_env="ANTHROPIC_API_KEY",
        auth_header="x-api-key",
        extra_headers=(("anthropic-version", "2023-06-01"),),
    ),
    "openai": SampleRequest(
        path="/v1/responses",
        body={"model": "gpt-4.1-mini", "input": "Say hi", "max_output_tokens": 16},
        model="gpt-4.1-mini",
        api_key_env="OPENAI_API_KEY",
    ),
}


@dataclass(frozen=True, slots=True)
class StructureDiff:
    missing_in_mock: frozenset[str]
    extra_in_mock: frozenset[str]

    @property
    def matches(self) -> bool:
        return not self.missing_in_mock and not self.extra_in_mock

    def to_dict(self) -> dict[str, Any]:
        return {
            "matches": self.matches,
            "missing_in_mock": sorted(self.missing_in_mock),
            "extra_in_mock": sorted(self.extra_in_mock),
        }


def extract_keys(value: Any, prefix: str = "") -> set[str]:
    """Flatten the key paths of a JSON value.

    Array items are written as ``[*]`` and only the first item is inspected.
    """
    keys: set[str] = set()
    if isinstance(value, dict):
        for key, item in value.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            keys.add(path)
            keys.update(extract_keys(item, path))
    elif isinstance(value, list) and value:
        keys.update(extract_keys(value[0], f"{prefix}[*]"))
    return keys


def compare_structure(real: Any, mock: Any) -> StructureDiff:
    real_keys = extract_keys(real)
    mock_keys = extract_keys(mock)
    return StructureDiff(
        missing_in_mock=frozenset(real_keys - mock_keys),
        extra_in_mock=frozenset(mock_keys - real_keys),
    )


def fetch_provider_response(
    provider: str,
    base_url: str,
    *,
    api_key: str | None = None,
    model: str | None = None,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Any:
    """Send the provider's sample request to ``base_url`` and return the JSON body."""
    try:
        sample = SAMPLE_REQUESTS[provider]
    except KeyError:
        raise ValueError(f"No sample request for provider '{provider}'.") from None

    headers = {"content-type": "application/json", **dict(sample.extra_headers)}
    if api_key:
        if sample.auth_header == "authorization":
            headers["authorization"] = f"Bearer {api_key}"
        else:
            headers[sample.auth_header] = api_key

    url = base_url.rstrip("/") + sample.path_for(model)
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout)
    try:
        logger.debug("POST %s", url)
        response = http.post(url, json=sample.body_for(model), headers=headers)
        response.raise_for_status()
        return response.json()
    finally:
        if owns_client:
            http.close()
