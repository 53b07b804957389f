"""Anthropic Messages API adapter."""

from __future__ import annotations

from typing import Any, Iterator

from tokenipsum.core.models import (
    CanonicalRequest,
    CanonicalResponse,
    ContentBlock,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolDef,
)
from tokenipsum.providers.base import (
    ErrorPayload,
    ProviderAdapter,
    compact_json,
    normalize_role,
    optional_bool,
    optional_dict,
    optional_list,
    optional_positive_int,
    require_list,
    require_object,
    require_string,
    text_from_parts,
)
from tokenipsum.providers.exceptions import MalformedRequestError
from tokenipsum.streaming import DEFAULT_WORDS_PER_CHUNK, Frame, split_text


class ClaudeAdapter(ProviderAdapter):
    """Translate `/v1/messages` payloads."""

    name = "claude"

    def parse(self, payload: Any, *, model: str | None = None) -> CanonicalRequest:
        body = require_object(payload)
        model_name = require_string(body, "model")
        raw_messages = require_list(body, "messages")
        if body.get("max_tokens") is None:
            raise MalformedRequestError("missing required field: max_tokens")
        max_tokens = optional_positive_int(body, "max_tokens")

        messages: list[Message] = []
        system = body.get("system")
        system_text = text_from_parts(system) if system is not None else ""
        if system_text:
            messages.append(Message(role="system", content=system_text))

        for index, raw in enumerate(raw_messages):
            if not isinstance(raw, dict):
                raise MalformedRequestError(f"messages[{index}] must be an object")
            if "role" not in raw:
                raise MalformedRequestError(f"messages[{index}] is missing role")
            content = raw.get("content")
            role = normalize_role(raw["role"])
            if _only_tool_results(content):
                role = "tool"
            messages.append(Message(role=role, content=_content_text(content)))

        tools: list[ToolDef] = []
        for raw_tool in optional_list(body, "tools"):
            if isinstance(raw_tool, dict) and isinstance(raw_tool.get("name"), str):
                tools.append(ToolDef(name=raw_tool["name"], schema=raw_tool.get("input_schema")))

        thinking_budget = None
        thinking = optional_dict(body, "thinking")
        if thinking.get("type") == "enabled" or thinking.get("enabled") is True:
            if thinking.get("budget_tokens") is None:
                raise MalformedRequestError("thinking.budget_tokens is required when enabled")
            thinking_budget = optional_positive_int(thinking, "budget_tokens")

        return CanonicalRequest(
            model=model_name,
            messages=tuple(messages),
            tools=tuple(tools),
            stream=optional_bool(body, "stream"),
            max_tokens=max_tokens,
            thinking_budget=thinking_budget,
        )

    def serialize(self, response: CanonicalResponse, request: CanonicalRequest) -> dict[str, Any]:
        return {
            "id": _message_id(response),
            "type": "message",
            "role": "assistant",
            "model": response.model,
            "content": [_block_payload(block) for block in response.content_blocks],
            "stop_reason": response.stop_reason,
            "stop_sequence": None,
            "usage": _usage_payload(response, response.usage.completion_tokens),
        }

    def stream(
        self,
        response: CanonicalResponse,
        request: CanonicalRequest,
        *,
        words_per_chunk: int = DEFAULT_WORDS_PER_CHUNK,
    ) -> Iterator[Frame]:
        message = self.serialize(response, request)
        message["content"] = []
        message["stop_reason"] = None
        message["usage"] = _usage_payload(response, 1)
        yield _event("message_start", {"message": message})
        yield _event("ping", {})

        for index, block in enumerate(response.content_blocks):
            yield from _block_events(index, block, words_per_chunk)

        yield _event(
            "message_delta",
            {
                "delta": {"stop_reason": response.stop_reason, "stop_sequence": None},
                "usage": {"output_tokens": response.usage.completion_tokens},
            },
        )
        yield _event("message_stop", {})

    def serialize_error(self, kind: str, *, requests_per_minute: int = 60) -> ErrorPayload:
        if kind == "unauthorized":
            return ErrorPayload(401, _error("authentication_error", "Invalid API key provided."))
        if kind == "rate_limited":
            return ErrorPayload(
                429,
                _error("rate_limit_error", "Rate limit exceeded. Please retry after 60 seconds."),
                {
                    "retry-after": "60",
                    "x-ratelimit-limit-requests": str(requests_per_minute),
                    "x-ratelimit-remaining-requests": "0",
                },
            )
        if kind == "server_error":
            return ErrorPayload(
                500,
                _error("api_error", "An unexpected error occurred. Please try again later."),
            )
        raise ValueError(f"error kind has no response body: {kind}")

    def serialize_malformed(self, message: str) -> ErrorPayload:
        return ErrorPayload(400, _error("invalid_request_error", message))


def _only_tool_results(content: Any) -> bool:
    return (
        isinstance(content, list)
        and bool(content)
        and all(isinstance(part, dict) and part.get("type") == "tool_result" for part in content)
    )


def _content_text(content: Any) -> str:
    if not isinstance(content, list):
        return text_from_parts(content)
    chunks: list[str] = []
    for part in content:
        if isinstance(part, dict) and part.get("type") == "tool_result":
            chunks.append(text_from_parts(part.get("content")))
        else:
            text = text_from_parts([part])
            if text:
                chunks.append(text)
    return "\n".join(chunk for chunk in chunks if chunk)


def _message_id(response: CanonicalResponse) -> str:
    return f"msg_{response.id}"


def _block_payload(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, ThinkingBlock):
        return {"type": "thinking", "thinking": block.thinking, "signature": block.signature}
    if isinstance(block, ToolCallBlock):
        return {
            "type": "tool_use",
            "id": f"toolu_{block.id}",
            "name": block.name,
            "input": block.arguments,
        }
    return {"type": "text", "text": block.text}


def _usage_payload(response: CanonicalResponse, output_tokens: int) -> dict[str, int]:
    return {
        "input_tokens": response.usage.prompt_tokens,
        "output_tokens": output_tokens,
        "cache_creation_input_tokens": 0,
        "cache_read_input_tokens": 0,
    }


def _block_events(index: int, block: ContentBlock, words_per_chunk: int) -> Iterator[Frame]:
    if isinstance(block, ThinkingBlock):
        start = {"type": "thinking", "thinking": "", "signature": ""}
        deltas = [
            {"type": "thinking_delta", "thinking": piece}
            for piece in split_text(block.thinking, words_per_chunk)
        ]
        deltas.append({"type": "signature_delta", "signature": block.signature})
    elif isinstance(block, ToolCallBlock):
        start = {**_block_payload(block), "input": {}}
        deltas = [{"type": "input_json_delta", "partial_json": compact_json(block.arguments)}]
    else:
        assert isinstance(block, TextBlock)
        start = {"type": "text", "text": ""}
        deltas = [
            {"type": "text_delta", "text": piece}
            for piece in split_text(block.text, words_per_chunk)
        ]

    yield _event("content_block_start", {"index": index, "content_block": start})
    for delta in deltas:
        yield _event("content_block_delta", {"index": index, "delta": delta})
    yield _event("content_block_stop", {"index": index})


def _event(name: str, payload: dict[str, Any]) -> Frame:
    return Frame({"type": name, **payload}, event=name)


def _error(error_type: str, message: str) -> dict[str, Any]:
    return {"type": "error", "error": {"type": error_type, "message": message}}
