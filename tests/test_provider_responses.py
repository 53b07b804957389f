import json
import random

import pytest

from tokenipsum.core import CanonicalRequest, CanonicalResponse
from tokenipsum.generator import ContentGenerator
from tokenipsum.providers import MalformedRequestError, ResponsesAdapter


def _respond(request: CanonicalRequest) -> CanonicalResponse:
    return ContentGenerator(clock=lambda: 1_700_000_000).generate(
        request, rng=random.Random(4), sequence=9
    )


def test_parse_string_input_and_instructions() -> None:
    request = ResponsesAdapter().parse(
        {
            "model": "gpt-4.1-mini",
            "input": "Tell me a story",
            "instructions": "Be concise.",
            "max_output_tokens": 40,
            "temperature": 0.3,
        }
    )

    assert [(message.role, message.content) for message in request.messages] == [
        ("system", "Be concise."),
        ("user", "Tell me a story"),
    ]
    assert request.max_tokens == 40
    assert request.extras["temperature"] == 0.3


def test_parse_item_list_with_function_call_output() -> None:
    request = ResponsesAdapter().parse(
        {
            "model": "m",
            "input": [
                {"role": "user", "content": [{"type": "input_text", "text": "weather?"}]},
                {"type": "function_call", "call_id": "c1", "name": "w", "arguments": "{}"},
                {"type": "function_call_output", "call_id": "c1", "output": "rainy"},
                {"role": "developer", "content": "note"},
            ],
            "tools": [{"type": "function", "name": "w", "parameters": {}}],
        }
    )

    assert [(message.role, message.content) for message in request.messages] == [
        ("user", "weather?"),
        ("assistant", "{}"),
        ("tool", "rainy"),
        ("system", "note"),
    ]
    assert request.tools[0].name == "w"


@pytest.mark.parametrize(
    "payload",
    [
        {"input": "hi"},
        {"model": "m"},
        {"model": "m", "input": ""},
        {"model": "m", "input": []},
        {"model": "m", "input": 5},
        {"model": "m", "input": [7]},
        {"model": "m", "input": "hi", "max_output_tokens": "10"},
    ],
)
def test_parse_rejects_malformed_bodies(payload: dict) -> None:
    with pytest.raises(MalformedRequestError):
        ResponsesAdapter().parse(payload)


def test_serialize_completed_message() -> None:
    adapter = ResponsesAdapter()
    request = adapter.parse({"model": "m", "input": "hi"})
    response = _respond(request)

    body = adapter.serialize(response, request)

    assert body["id"] == f"resp_{response.id}"
    assert body["object"] == "response"
    assert body["status"] == "completed"
    assert body["incomplete_details"] is None
    item = body["output"][0]
    assert item["type"] == "message"
    assert item["role"] == "assistant"
    assert item["content"][0]["type"] == "output_text"
    assert item["content"][0]["text"] == response.text()
    assert body["usage"]["input_tokens"] == 1
    assert body["usage"]["output_tokens"] == response.usage.completion_tokens
    assert body["usage"]["total_tokens"] == response.usage.total_tokens


def test_serialize_incomplete_when_cut_by_max_output_tokens() -> None:
    adapter = ResponsesAdapter()
    request = adapter.parse({"model": "m", "input": "hi", "max_output_tokens": 4})

    body = adapter.serialize(_respond(request), request)

    assert body["status"] == "incomplete"
    assert body["incomplete_details"] == {"reason": "max_output_tokens"}
    assert body["max_output_tokens"] == 4


def test_serialize_function_call_item() -> None:
    adapter = ResponsesAdapter()
    request = adapter.parse(
        {
            "model": "m",
            "input": "what is the meaning of life",
            "tools": [{"type": "function", "name": "lookup"}],
        }
    )

    item = adapter.serialize(_respond(request), request)["output"][0]

    assert item["type"] == "function_call"
    assert item["name"] == "lookup"
    assert item["call_id"].startswith("call_")
    assert json.loads(item["arguments"]) == {"query": "the meaning of life"}


def test_stream_event_sequence_numbers_and_text() -> None:
    adapter = ResponsesAdapter()
    request = adapter.parse({"model": "m", "input": "hi", "stream": True})
    response = _respond(request)

    frames = list(adapter.stream(response, request, words_per_chunk=3))
    names = [frame.event for frame in frames]

    assert names[:5] == [
        "response.created",
        "response.in_progress",
        "response.output_item.added",
        "response.content_part.added",
        "response.output_text.delta",
    ]
    assert names[-4:] == [
        "response.output_text.done",
        "response.content_part.done",
        "response.output_item.done",
        "response.completed",
    ]
    assert [frame.data["sequence_number"] for frame in frames] == list(range(len(frames)))
    assert all(frame.data["type"] == frame.event for frame in frames)

    deltas = "".join(
        frame.data["delta"] for frame in frames if frame.event == "response.output_text.delta"
    )
    assert deltas == response.text()
    assert frames[0].data["response"]["status"] == "in_progress"
    assert frames[-1].data["response"]["status"] == "completed"
    assert frames[-1].data["response"]["output"][0]["content"][0]["text"] == response.text()


def test_stream_ends_incomplete_when_truncated() -> None:
    adapter = ResponsesAdapter()
    request = adapter.parse({"model": "m", "input": "hi", "stream": True, "max_output_tokens": 2})

    frames = list(adapter.stream(_respond(request), request))

    assert frames[-1].event == "response.incomplete"
    assert frames[-1].data["response"]["status"] == "incomplete"


def test_stream_function_call_arguments() -> None:
    adapter = ResponsesAdapter()
    request = adapter.parse(
        {
            "model": "m",
            "input": "search for otters",
            "tools": [{"type": "function", "name": "web_search"}],
            "stream": True,
        }
    )

    frames = list(adapter.stream(_respond(request), request))
    names = [frame.event for frame in frames]

    assert "response.function_call_arguments.delta" in names
    assert "response.output_text.delta" not in names
    done = frames[names.index("response.function_call_arguments.done")].data
    assert json.loads(done["arguments"]) == {"query": "for otters"}
    added = frames[names.index("response.output_item.added")].data["item"]
    assert added["status"] == "in_progress"
    assert added["arguments"] == ""
    assert names[-1] == "response.completed"


def test_error_envelopes_match_openai_shape() -> None:
    adapter = ResponsesAdapter()

    assert adapter.serialize_error("unauthorized").status_code == 401
    assert adapter.serialize_error("rate_limited").body["error"]["type"] == "rate_limit_error"
    assert adapter.serialize_error("server_error").status_code == 500
    assert adapter.serialize_malformed("bad input").body["error"]["message"] == "bad input"
