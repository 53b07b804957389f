"""OpenAI-compatible chat completions adapter (Cerebras flavored)."""

from __future__ import annotations

from typing import Any, Iterator

from tokenipsum.core.models import (
    CanonicalRequest,
    CanonicalResponse,
    Message,
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
from tokenipsum.streaming import DEFAULT_WORDS_PER_CHUNK, DONE_SENTINEL, Frame, split_text

_FINISH_REASONS = {
    "end_turn": "stop",
    "tool_use": "tool_calls",
    "max_tokens": "length",
}

_TIME_INFO = {
    "queue_time": 0.025,
    "prompt_time": 0.003,
    "completion_time": 0.005,
    "total_time": 0.035,
}


class ChatCompletionsAdapter(ProviderAdapter):
    """Translate `/v1/chat/completions` payloads."""

    name = "cerebras"

    def parse(self, payload: Any, *, model: str | None = None) -> CanonicalRequest:
        body = require_object(payload)
        model_name = require_string(body, "model")
        raw_messages = require_list(body, "messages")

        messages: list[Message] = []
        for index, raw in enumerate(raw_messages):
            if not isinstance(raw, dict):
                raise MalformedRequestError(f"messages[{index}] must be an object")
            if "role" not in raw:
                raise MalformedRequestError(f"messages[{index}] is missing role")
            content = text_from_parts(raw.get("content"))
            messages.append(Message(role=normalize_role(raw["role"]), content=content))

        tools: list[ToolDef] = []
        for raw_tool in optional_list(body, "tools"):
            if not isinstance(raw_tool, dict):
                continue
            function = raw_tool.get("function")
            if isinstance(function, dict) and isinstance(function.get("name"), str):
                tools.append(ToolDef(name=function["name"], schema=function.get("parameters")))

        max_tokens = optional_positive_int(body, "max_completion_tokens")
        if max_tokens is None:
            max_tokens = optional_positive_int(body, "max_tokens")

        stream_options = optional_dict(body, "stream_options")
        return CanonicalRequest(
            model=model_name,
            messages=tuple(messages),
            tools=tuple(tools),
            stream=optional_bool(body, "stream"),
            max_tokens=max_tokens,
            extras={"include_usage": optional_bool(stream_options, "include_usage")},
        )

    def serialize(self, response: CanonicalResponse, request: CanonicalRequest) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": None}
        tool_calls = response.tool_calls()
        if tool_calls:
            message["tool_calls"] = [_tool_call_payload(block) for block in tool_calls]
        else:
            message["content"] = response.text()

        return {
            "id": _completion_id(response),
            "object": "chat.completion",
            "created": response.created_at,
            "model": response.model,
            "system_fingerprint": _fingerprint(response),
            "choices": [
                {
                    "index": 0,
                    "message": message,
                    "finish_reason": _FINISH_REASONS[response.stop_reason],
                }
            ],
            "usage": _usage_payload(response),
            "time_info": {**_TIME_INFO, "created": float(response.created_at)},
        }

    def stream(
        self,
        response: CanonicalResponse,
        request: CanonicalRequest,
        *,
        words_per_chunk: int = DEFAULT_WORDS_PER_CHUNK,
    ) -> Iterator[Frame]:
        yield Frame(_chunk(response, {"role": "assistant", "content": ""}))

        tool_calls = response.tool_calls()
        if tool_calls:
            yield Frame(
                _chunk(
                    response,
                    {
                        "tool_calls": [
                            {"index": index, **_tool_call_payload(block)}
                            for index, block in enumerate(tool_calls)
                        ]
                    },
                )
            )
        else:
            for piece in split_text(response.text(), words_per_chunk):
                yield Frame(_chunk(response, {"content": piece}))

        final = _chunk(response, {}, finish_reason=_FINISH_REASONS[response.stop_reason])
        if request.extras.get("include_usage"):
            final["usage"] = _usage_payload(response)
            final["time_info"] = {**_TIME_INFO, "created": float(response.created_at)}
        yield Frame(final)
        yield Frame(DONE_SENTINEL)

    def serialize_error(self, kind: str, *, requests_per_minute: int = 60) -> ErrorPayload:
        return openai_style_error(kind, requests_per_minute=requests_per_minute)

    def serialize_malformed(self, message: str) -> ErrorPayload:
        return openai_style_malformed(message)


def openai_style_error(kind: str, *, requests_per_minute: int = 60) -> ErrorPayload:
    """Error envelope shared by OpenAI-compatible chat and the Responses API."""
    if kind == "unauthorized":
        return ErrorPayload(
            401,
            _openai_error(
                "Invalid API key provided. You can find your API key at "
                "https://platform.example.com/account/api-keys.",
                "invalid_request_error",
                "invalid_api_key",
            ),
        )
    if kind == "rate_limited":
        return ErrorPayload(
            429,
            _openai_error(
                "Rate limit reached for requests. Please slow down.",
                "rate_limit_error",
                "rate_limit_exceeded",
            ),
            {
                "x-ratelimit-limit-requests": str(requests_per_minute),
                "x-ratelimit-remaining-requests": "0",
                "x-ratelimit-reset-requests": "1s",
                "retry-after": "1",
            },
        )
    if kind == "server_error":
        return ErrorPayload(
            500,
            _openai_error(
                "The server had an error while processing your request. Sorry about that!",
                "server_error",
                "internal_error",
            ),
        )
    raise ValueError(f"error kind has no response body: {kind}")


def openai_style_malformed(message: str) -> ErrorPayload:
    return ErrorPayload(400, _openai_error(message, "invalid_request_error", "invalid_request"))


def _openai_error(message: str, error_type: str, code: str) -> dict[str, Any]:
    return {
        "error": {
            "message": message,
            "type": error_type,
            "param": None,
            "code": code,
        }
    }


def _completion_id(response: CanonicalResponse) -> str:
    return f"chatcmpl-{response.id}"


def _fingerprint(response: CanonicalResponse) -> str:
    return f"fp_{response.id[-12:]}"


def _tool_call_payload(block: ToolCallBlock) -> dict[str, Any]:
    return {
        "id": f"call_{block.id}",
        "type": "function",
        "function": {"name": block.name, "arguments": compact_json(block.arguments)},
    }


def _usage_payload(response: CanonicalResponse) -> dict[str, Any]:
    return {
        **response.usage.to_dict(),
        "prompt_tokens_details": {"cached_tokens": 0},
    }


def _chunk(
    response: CanonicalResponse,
    delta: dict[str, Any],
    *,
    finish_reason: str | None = None,
) -> dict[str, Any]:
    choice: dict[str, Any] = {"index": 0, "delta": delta}
    if finish_reason is not None:
        choice["finish_reason"] = finish_reason
    return {
        "id": _completion_id(response),
        "object": "chat.completion.chunk",
        "created": response.created_at,
        "model": response.model,
        "system_fingerprint": _fingerprint(response),
        "choices": [choice],
    }
