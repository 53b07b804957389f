"""OpenAI Responses API adapter."""

from __future__ import annotations

from typing import Any, Iterator

from tokenipsum.core.models import CanonicalRequest, CanonicalResponse, Message, ToolDef
from tokenipsum.providers.base import (
    ErrorPayload,
    ProviderAdapter,
    compact_json,
    normalize_role,
    optional_bool,
    optional_list,
    optional_positive_int,
    require_object,
    require_string,
    text_from_parts,
)
from tokenipsum.providers.chat import openai_style_error, openai_style_malformed
from tokenipsum.providers.exceptions import MalformedRequestError
from tokenipsum.streaming import DEFAULT_WORDS_PER_CHUNK, Frame, split_text

_TEXT_PART_TYPES = ("text", "input_text", "output_text")


class ResponsesAdapter(ProviderAdapter):
    """Translate `/v1/responses` payloads."""

    name = "openai"

    def parse(self, payload: Any, *, model: str | None = None) -> CanonicalRequest:
        body = require_object(payload)
        model_name = require_string(body, "model")
        raw_input = body.get("input")
        if raw_input is None:
            raise MalformedRequestError("missing required field: input")

        messages: list[Message] = []
        instructions = body.get("instructions")
        if isinstance(instructions, str) and instructions:
            messages.append(Message(role="system", content=instructions))

        if isinstance(raw_input, str):
            if not raw_input.strip():
                raise MalformedRequestError("input must be a non-empty string or array")
            messages.append(Message(role="user", content=raw_input))
        elif isinstance(raw_input, list) and raw_input:
            for index, item in enumerate(raw_input):
                messages.append(_input_item(index, item))
        else:
            raise MalformedRequestError("input must be a non-empty string or array")

        tools: list[ToolDef] = []
        for raw_tool in optional_list(body, "tools"):
            if (
                isinstance(raw_tool, dict)
                and raw_tool.get("type", "function") == "function"
                and isinstance(raw_tool.get("name"), str)
            ):
                tools.append(ToolDef(name=raw_tool["name"], schema=raw_tool.get("parameters")))

        extras = {
            "instructions": instructions if isinstance(instructions, str) else None,
            "temperature": _optional_number(body, "temperature", 1.0),
            "top_p": _optional_number(body, "top_p", 1.0),
            "store": optional_bool(body, "store", default=True),
            "reasoning": body.get("reasoning") if isinstance(body.get("reasoning"), dict) else None,
            "tools": [tool for tool in optional_list(body, "tools") if isinstance(tool, dict)],
        }
        return CanonicalRequest(
            model=model_name,
            messages=tuple(messages),
            tools=tuple(tools),
            stream=optional_bool(body, "stream"),
            max_tokens=optional_positive_int(body, "max_output_tokens"),
            extras=extras,
        )

    def serialize(self, response: CanonicalResponse, request: CanonicalRequest) -> dict[str, Any]:
        return _response_object(response, request, output=_output_items(response))

    def stream(
        self,
        response: CanonicalResponse,
        request: CanonicalRequest,
        *,
        words_per_chunk: int = DEFAULT_WORDS_PER_CHUNK,
    ) -> Iterator[Frame]:
        sequence_number = 0

        def event(name: str, payload: dict[str, Any]) -> Frame:
            nonlocal sequence_number
            frame = Frame(
                {"type": name, "sequence_number": sequence_number, **payload},
                event=name,
            )
            sequence_number += 1
            return frame

        pending = _response_object(response, request, output=[], in_progress=True)
        yield event("response.created", {"response": pending})
        yield event("response.in_progress", {"response": pending})

        item = _output_items(response)[0]
        item_id = item["id"]
        yield event(
            "response.output_item.added",
            {"output_index": 0, "item": _in_progress_item(item)},
        )

        if item["type"] == "function_call":
            arguments = item["arguments"]
            yield event(
                "response.function_call_arguments.delta",
                {"item_id": item_id, "output_index": 0, "delta": arguments},
            )
            yield event(
                "response.function_call_arguments.done",
                {"item_id": item_id, "output_index": 0, "arguments": arguments},
            )
        else:
            text = item["content"][0]["text"]
            position = {"item_id": item_id, "output_index": 0, "content_index": 0}
            yield event(
                "response.content_part.added",
                {**position, "part": {"type": "output_text", "annotations": [], "text": ""}},
            )
            for piece in split_text(text, words_per_chunk):
                yield event("response.output_text.delta", {**position, "delta": piece, "logprobs": []})
            yield event("response.output_text.done", {**position, "text": text, "logprobs": []})
            yield event("response.content_part.done", {**position, "part": item["content"][0]})

        yield event("response.output_item.done", {"output_index": 0, "item": item})

        final = _response_object(response, request, output=[item])
        terminal = "response.incomplete" if final["status"] == "incomplete" else "response.completed"
        yield event(terminal, {"response": final})

    def serialize_error(self, kind: str, *, requests_per_minute: int = 60) -> ErrorPayload:
        return openai_style_error(kind, requests_per_minute=requests_per_minute)

    def serialize_malformed(self, message: str) -> ErrorPayload:
        return openai_style_malformed(message)


def _input_item(index: int, item: Any) -> Message:
    if isinstance(item, str):
        return Message(role="user", content=item)
    if not isinstance(item, dict):
        raise MalformedRequestError(f"input[{index}] must be an object")
    item_type = item.get("type", "message")
    if item_type == "function_call_output":
        output = item.get("output")
        return Message(role="tool", content=output if isinstance(output, str) else compact_json(output))
    if item_type == "function_call":
        return Message(role="assistant", content=str(item.get("arguments", "")))
    if "role" not in item:
        raise MalformedRequestError(f"input[{index}] is missing role")
    return Message(
        role=normalize_role(item["role"]),
        content=text_from_parts(item.get("content"), text_types=_TEXT_PART_TYPES),
    )


def _optional_number(payload: dict[str, Any], name: str, default: float) -> float:
    value = payload.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRequestError(f"{name} must be a number")
    return float(value)


def _output_items(response: CanonicalResponse) -> list[dict[str, Any]]:
    tool_calls = response.tool_calls()
    if tool_calls:
        return [
            {
                "id": f"fc_{block.id}",
                "type": "function_call",
                "status": "completed",
                "arguments": compact_json(block.arguments),
                "call_id": f"call_{block.id}",
                "name": block.name,
            }
            for block in tool_calls
        ]
    return [
        {
            "id": f"msg_{response.id}",
            "type": "message",
            "status": "completed",
            "content": [
                {
                    "type": "output_text",
                    "annotations": [],
                    "logprobs": [],
                    "text": response.text(),
                }
            ],
            "role": "assistant",
        }
    ]


def _in_progress_item(item: dict[str, Any]) -> dict[str, Any]:
    if item["type"] == "function_call":
        return {**item, "status": "in_progress", "arguments": ""}
    return {**item, "status": "in_progress", "content": []}


def _response_object(
    response: CanonicalResponse,
    request: CanonicalRequest,
    *,
    output: list[dict[str, Any]],
    in_progress: bool = False,
) -> dict[str, Any]:
    extras = request.extras
    incomplete = response.stop_reason == "max_tokens"
    if in_progress:
        status = "in_progress"
    else:
        status = "incomplete" if incomplete else "completed"
    finished = not in_progress

    reasoning = extras.get("reasoning") or {}
    return {
        "id": f"resp_{response.id}",
        "object": "response",
        "created_at": response.created_at,
        "status": status,
        "background": False,
        "billing": {"payer": "developer"},
        "completed_at": response.created_at if finished and not incomplete else None,
        "error": None,
        "incomplete_details": (
            {"reason": "max_output_tokens"} if finished and incomplete else None
        ),
        "instructions": extras.get("instructions"),
        "max_output_tokens": request.max_tokens,
        "max_tool_calls": None,
        "model": response.model,
        "output": output,
        "parallel_tool_calls": True,
        "previous_response_id": None,
        "reasoning": {
            "effort": reasoning.get("effort"),
            "summary": reasoning.get("summary"),
        },
        "service_tier": "default",
        "store": extras.get("store", True),
        "temperature": extras.get("temperature", 1.0),
        "text": {"format": {"type": "text"}, "verbosity": "medium"},
        "tool_choice": "auto",
        "tools": extras.get("tools", []),
        "top_p": extras.get("top_p", 1.0),
        "truncation": "disabled",
        "usage": _usage_payload(response) if finished else None,
        "user": None,
        "metadata": {},
    }


def _usage_payload(response: CanonicalResponse) -> dict[str, Any]:
    return {
        "input_tokens": response.usage.prompt_tokens,
        "input_tokens_details": {"cached_tokens": 0},
        "output_tokens": response.usage.completion_tokens,
        "output_tokens_details": {"reasoning_tokens": 0},
        "total_tokens": response.usage.total_tokens,
    }
