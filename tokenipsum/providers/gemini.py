"""Google Gemini generateContent adapter."""

from __future__ import annotations

from typing import Any, Iterator

from tokenipsum.core.models import CanonicalRequest, CanonicalResponse, Message, ToolDef
from tokenipsum.core.tokens import count_tokens
from tokenipsum.providers.base import (
    ErrorPayload,
    ProviderAdapter,
    compact_json,
    normalize_role,
    optional_dict,
    optional_list,
    optional_positive_int,
    require_list,
    require_object,
)
from tokenipsum.providers.exceptions import MalformedRequestError
from tokenipsum.streaming import DEFAULT_WORDS_PER_CHUNK, Frame, split_text

GEMINI_ACTIONS = ("generateContent", "streamGenerateContent")

_FINISH_REASONS = {
    "end_turn": "STOP",
    "tool_use": "STOP",
    "max_tokens": "MAX_TOKENS",
}


class GeminiAdapter(ProviderAdapter):
    """Translate `/v1beta/models/{model}:generateContent` payloads."""

    name = "gemini"

    def parse(self, payload: Any, *, model: str | None = None) -> CanonicalRequest:
        body = require_object(payload)
        contents = require_list(body, "contents")

        messages: list[Message] = []
        system = body.get("systemInstruction", body.get("system_instruction"))
        if isinstance(system, dict):
            system_text = _parts_text(system.get("parts"))
            if system_text:
                messages.append(Message(role="system", content=system_text))

        for index, content in enumerate(contents):
            if not isinstance(content, dict):
                raise MalformedRequestError(f"contents[{index}] must be an object")
            parts = content.get("parts")
            if not isinstance(parts, list):
                raise MalformedRequestError(f"contents[{index}].parts must be an array")
            role = normalize_role(content.get("role"), default="user")
            if any(_is_function_response(part) for part in parts):
                role = "tool"
            messages.append(Message(role=role, content=_parts_text(parts)))

        tools: list[ToolDef] = []
        for raw_tool in optional_list(body, "tools"):
            if not isinstance(raw_tool, dict):
                continue
            declarations = raw_tool.get("functionDeclarations", raw_tool.get("function_declarations"))
            if not isinstance(declarations, list):
                continue
            for declaration in declarations:
                if isinstance(declaration, dict) and isinstance(declaration.get("name"), str):
                    tools.append(
                        ToolDef(name=declaration["name"], schema=declaration.get("parameters"))
                    )

        generation_config = optional_dict(body, "generationConfig") or optional_dict(
            body, "generation_config"
        )
        max_tokens = optional_positive_int(generation_config, "maxOutputTokens")
        if max_tokens is None:
            max_tokens = optional_positive_int(generation_config, "max_output_tokens")

        model_name = model or body.get("model")
        if not isinstance(model_name, str) or not model_name:
            raise MalformedRequestError("model must be given in the request path")

        return CanonicalRequest(
            model=model_name,
            messages=tuple(messages),
            tools=tuple(tools),
            # Streaming is selected by the route action, not the body.
            stream=False,
            max_tokens=max_tokens,
        )

    def serialize(self, response: CanonicalResponse, request: CanonicalRequest) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        for block in response.tool_calls():
            parts.append({"functionCall": {"name": block.name, "args": block.arguments}})
        if not parts:
            parts.append({"text": response.text()})

        return _envelope(
            response,
            parts=parts,
            finish_reason=_FINISH_REASONS[response.stop_reason],
            candidates_tokens=response.usage.completion_tokens,
        )

    def stream(
        self,
        response: CanonicalResponse,
        request: CanonicalRequest,
        *,
        words_per_chunk: int = DEFAULT_WORDS_PER_CHUNK,
    ) -> Iterator[Frame]:
        finish_reason = _FINISH_REASONS[response.stop_reason]
        tool_calls = response.tool_calls()
        if tool_calls:
            yield Frame(
                _envelope(
                    response,
                    parts=[
                        {"functionCall": {"name": block.name, "args": block.arguments}}
                        for block in tool_calls
                    ],
                    finish_reason=finish_reason,
                    candidates_tokens=response.usage.completion_tokens,
                )
            )
            return

        pieces = split_text(response.text(), words_per_chunk) or [""]
        emitted = 0
        for index, piece in enumerate(pieces):
            emitted += count_tokens(piece)
            is_last = index == len(pieces) - 1
            yield Frame(
                _envelope(
                    response,
                    parts=[{"text": piece}],
                    finish_reason=finish_reason if is_last else None,
                    candidates_tokens=emitted,
                )
            )

    def serialize_error(self, kind: str, *, requests_per_minute: int = 60) -> ErrorPayload:
        if kind == "unauthorized":
            return ErrorPayload(
                401,
                {
                    "error": {
                        "code": 401,
                        "message": "API key not valid. Please pass a valid API key.",
                        "status": "UNAUTHENTICATED",
                        "details": [
                            {
                                "@type": "type.googleapis.com/google.rpc.ErrorInfo",
                                "reason": "API_KEY_INVALID",
                                "domain": "googleapis.com",
                            }
                        ],
                    }
                },
            )
        if kind == "rate_limited":
            return ErrorPayload(
                429,
                {
                    "error": {
                        "code": 429,
                        "message": "Resource has been exhausted (e.g. check quota).",
                        "status": "RESOURCE_EXHAUSTED",
                        "details": [
                            {
                                "@type": "type.googleapis.com/google.rpc.QuotaFailure",
                                "violations": [
                                    {
                                        "subject": "GenerateContentRequest",
                                        "description": "Quota exceeded",
                                    }
                                ],
                            }
                        ],
                    }
                },
                {"retry-after": "60"},
            )
        if kind == "server_error":
            return ErrorPayload(
                500,
                {
                    "error": {
                        "code": 500,
                        "message": "An internal error has occurred. Please retry or report in "
                        "https://developers.generativeai.google/guide/troubleshooting",
                        "status": "INTERNAL",
                    }
                },
            )
        raise ValueError(f"error kind has no response body: {kind}")

    def serialize_malformed(self, message: str) -> ErrorPayload:
        return ErrorPayload(
            400,
            {"error": {"code": 400, "message": message, "status": "INVALID_ARGUMENT"}},
        )


def split_model_action(segment: str) -> tuple[str, str] | None:
    """Split a `{model}:{action}` path segment."""
    model, separator, action = segment.rpartition(":")
    if not separator or not model or not action:
        return None
    return model, action


def _parts_text(parts: Any) -> str:
    if not isinstance(parts, list):
        return ""
    chunks: list[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        text = part.get("text")
        if isinstance(text, str):
            chunks.append(text)
            continue
        function_response = part.get("functionResponse", part.get("function_response"))
        if isinstance(function_response, dict):
            chunks.append(compact_json(function_response.get("response", {})))
    return "\n".join(chunks)


def _is_function_response(part: Any) -> bool:
    return isinstance(part, dict) and (
        "functionResponse" in part or "function_response" in part
    )


def _envelope(
    response: CanonicalResponse,
    *,
    parts: list[dict[str, Any]],
    finish_reason: str | None,
    candidates_tokens: int,
) -> dict[str, Any]:
    candidate: dict[str, Any] = {
        "content": {"parts": parts, "role": "model"},
        "index": 0,
    }
    if finish_reason is not None:
        candidate["finishReason"] = finish_reason
    prompt_tokens = response.usage.prompt_tokens
    return {
        "candidates": [candidate],
        "usageMetadata": {
            "promptTokenCount": prompt_tokens,
            "candidatesTokenCount": candidates_tokens,
            "totalTokenCount": prompt_tokens + candidates_tokens,
        },
        "modelVersion": response.model,
        "responseId": response.id,
    }
