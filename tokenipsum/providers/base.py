"""Canonical provider adapter contract and shared parsing helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Iterator, Protocol

from tokenipsum.core.models import CanonicalRequest, CanonicalResponse
from tokenipsum.providers.exceptions import MalformedRequestError
from tokenipsum.streaming import DEFAULT_WORDS_PER_CHUNK, Frame


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """A provider-native error envelope with its HTTP status and headers."""

    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


class ProviderAdapter(Protocol):
    """Protocol for translating one provider wire format to and from the canonical model."""

    name: str

    def parse(self, payload: Any, *, model: str | None = None) -> CanonicalRequest:
        """Parse a native request body; raise MalformedRequestError when unusable."""

    def serialize(self, response: CanonicalResponse, request: CanonicalRequest) -> dict[str, Any]:
        """Render a non-streaming native success body."""

    def stream(
        self,
        response: CanonicalResponse,
        request: CanonicalRequest,
        *,
        words_per_chunk: int = DEFAULT_WORDS_PER_CHUNK,
    ) -> Iterator[Frame]:
        """Lazily render native streaming frames for a finished response."""

    def serialize_error(self, kind: str, *, requests_per_minute: int = 60) -> ErrorPayload:
        """Render a native error envelope for a gate error kind."""

    def serialize_malformed(self, message: str) -> ErrorPayload:
        """Render a native 400 envelope for an unusable request body."""


def require_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedRequestError("request body must be a JSON object")
    return payload


def require_string(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if value is None:
        raise MalformedRequestError(f"missing required field: {name}")
    if not isinstance(value, str) or not value.strip():
        raise MalformedRequestError(f"{name} must be a non-empty string")
    return value


def require_list(payload: dict[str, Any], name: str) -> list[Any]:
    value = payload.get(name)
    if value is None:
        raise MalformedRequestError(f"missing required field: {name}")
    if not isinstance(value, list) or not value:
        raise MalformedRequestError(f"{name} must be a non-empty array")
    return value


def optional_positive_int(payload: dict[str, Any], name: str) -> int | None:
    value = payload.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise MalformedRequestError(f"{name} must be a positive integer")
    return value


def optional_bool(payload: dict[str, Any], name: str, default: bool = False) -> bool:
    value = payload.get(name)
    if isinstance(value, bool):
        return value
    return default


def optional_dict(payload: dict[str, Any], name: str) -> dict[str, Any]:
    value = payload.get(name)
    if isinstance(value, dict):
        return value
    return {}


def optional_list(payload: dict[str, Any], name: str) -> list[Any]:
    value = payload.get(name)
    if isinstance(value, list):
        return value
    return []


def text_from_parts(parts: Any, *, text_types: tuple[str, ...] = ("text",)) -> str:
    """Join the text of typed content parts; plain strings pass through."""
    if isinstance(parts, str):
        return parts
    if not isinstance(parts, list):
        return ""
    chunks: list[str] = []
    for part in parts:
        if isinstance(part, str):
            chunks.append(part)
            continue
        if not isinstance(part, dict):
            continue
        part_type = part.get("type")
        text = part.get("text")
        if isinstance(text, str) and (part_type is None or part_type in text_types):
            chunks.append(text)
    return "\n".join(chunks)


def normalize_role(raw: Any, *, default: str = "user") -> str:
    role = str(raw or default).strip().lower()
    if role in {"model", "assistant"}:
        return "assistant"
    if role in {"system", "developer"}:
        return "system"
    if role in {"tool", "function"}:
        return "tool"
    return "user"


def compact_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
