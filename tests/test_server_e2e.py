import gzip
import json
import logging
import socket
import time
from typing import Iterator
import zlib

import pytest
import requests
import zstandard as zstd

from tokenipsum.config import Config
from tokenipsum.server import EmulatorServer, start_server

_CHAT_BODY = {"model": "llama-3.3-70b", "messages": [{"role": "user", "content": "hello"}]}


def _config(**sections: dict) -> Config:
    server = {"host": "127.0.0.1", "port": 0, "stream_delay_ms": 0, **sections.pop("server", {})}
    return Config.from_dict({"server": server, **sections})


@pytest.fixture()
def server() -> Iterator[EmulatorServer]:
    with start_server(_config()) as (running, _thread):
        yield running


def _read_sse(response: requests.Response) -> list[tuple[str | None, object]]:
    events: list[tuple[str | None, object]] = []
    event_name: str | None = None
    for line in response.iter_lines(decode_unicode=True):
        if not line:
            event_name = None
            continue
        if line.startswith("event: "):
            event_name = line[len("event: "):]
            continue
        if line.startswith("data: "):
            raw = line[len("data: "):]
            events.append((event_name, raw if raw == "[DONE]" else json.loads(raw)))
    return events


def test_health_endpoint(server: EmulatorServer) -> None:
    response = requests.get(f"{server.url}/health", timeout=5)

    assert response.status_code == 200
    assert response.text == "ok"
    assert response.headers["Content-Type"].startswith("text/plain")
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_chat_completion_round_trip(server: EmulatorServer) -> None:
    response = requests.post(f"{server.url}/v1/chat/completions", json=_CHAT_BODY, timeout=5)

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    body = response.json()
    assert body["object"] == "chat.completion"
    assert body["choices"][0]["message"]["role"] == "assistant"


def test_chat_completion_stream(server: EmulatorServer) -> None:
    response = requests.post(
        f"{server.url}/v1/chat/completions",
        json={**_CHAT_BODY, "stream": True},
        stream=True,
        timeout=5,
    )

    assert response.status_code == 200
    assert response.headers["Content-Type"] == "text/event-stream"
    assert response.headers["Cache-Control"] == "no-cache"
    events = _read_sse(response)
    assert events[-1] == (None, "[DONE]")
    assert events[-2][1]["choices"][0]["finish_reason"] == "stop"


def test_gemini_stream_action(server: EmulatorServer) -> None:
    response = requests.post(
        f"{server.url}/v1beta/models/gemini-2.0-flash:streamGenerateContent?alt=sse",
        json={"contents": [{"role": "user", "parts": [{"text": "hello"}]}]},
        stream=True,
        timeout=5,
    )

    events = _read_sse(response)
    assert response.status_code == 200
    assert len(events) > 1
    assert events[-1][1]["candidates"][0]["finishReason"] == "STOP"
    assert all(payload != "[DONE]" for _name, payload in events)


def test_claude_stream_uses_named_events(server: EmulatorServer) -> None:
    response = requests.post(
        f"{server.url}/v1/messages",
        json={
            "model": "claude-haiku-4-5",
            "max_tokens": 100,
            "stream": True,
            "messages": [{"role": "user", "content": "hello"}],
        },
        stream=True,
        timeout=5,
    )

    events = _read_sse(response)
    assert events[0][0] == "message_start"
    assert events[-1][0] == "message_stop"


def test_responses_api_non_streaming(server: EmulatorServer) -> None:
    response = requests.post(
        f"{server.url}/v1/responses",
        json={"model": "gpt-4.1-mini", "input": "hello"},
        timeout=5,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "completed"


def test_invalid_json_returns_provider_400(server: EmulatorServer) -> None:
    response = requests.post(
        f"{server.url}/v1/messages",
        data=b"{not json",
        headers={"Content-Type": "application/json"},
        timeout=5,
    )

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"


def test_unknown_path_and_gemini_action_return_404(server: EmulatorServer) -> None:
    assert requests.post(f"{server.url}/v1/embeddings", json={}, timeout=5).status_code == 404
    assert (
        requests.post(
            f"{server.url}/v1beta/models/gemini-2.0-flash:countTokens",
            json={},
            timeout=5,
        ).status_code
        == 404
    )
    assert requests.get(f"{server.url}/v1/messages", timeout=5).status_code == 404


def test_cors_preflight(server: EmulatorServer) -> None:
    response = requests.options(f"{server.url}/v1/chat/completions", timeout=5)

    assert response.status_code == 204
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "POST" in response.headers["Access-Control-Allow-Methods"]


@pytest.mark.parametrize(
    ("encoding", "compress"),
    [
        ("gzip", gzip.compress),
        ("deflate", zlib.compress),
        ("zstd", lambda data: zstd.ZstdCompressor().compress(data)),
    ],
)
def test_compressed_request_bodies(server: EmulatorServer, encoding: str, compress) -> None:
    response = requests.post(
        f"{server.url}/v1/chat/completions",
        data=compress(json.dumps(_CHAT_BODY).encode("utf-8")),
        headers={"Content-Type": "application/json", "Content-Encoding": encoding},
        timeout=5,
    )

    assert response.status_code == 200
    assert response.json()["object"] == "chat.completion"


def test_unsupported_encoding_is_a_malformed_request(server: EmulatorServer) -> None:
    response = requests.post(
        f"{server.url}/v1/chat/completions",
        data=b"whatever",
        headers={"Content-Type": "application/json", "Content-Encoding": "br"},
        timeout=5,
    )

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"


def test_disabled_provider_returns_404() -> None:
    with start_server(_config(providers={"claude": False})) as (running, _thread):
        response = requests.post(
            f"{running.url}/v1/messages",
            json={"model": "m", "max_tokens": 5, "messages": [{"role": "user", "content": "x"}]},
            timeout=5,
        )

    assert response.status_code == 404


def test_auth_and_rate_limit_errors_over_http() -> None:
    config = _config(
        auth={"require_auth": True, "valid_keys": ["sk-live"]},
        rate_limit={"enabled": True, "fail_after_requests": 2},
    )
    with start_server(config) as (running, _thread):
        url = f"{running.url}/v1/messages"
        body = {"model": "m", "max_tokens": 5, "messages": [{"role": "user", "content": "x"}]}

        denied = requests.post(url, json=body, timeout=5)
        allowed = requests.post(url, json=body, headers={"x-api-key": "sk-live"}, timeout=5)
        limited = requests.post(url, json=body, headers={"x-api-key": "sk-live"}, timeout=5)

    assert denied.status_code == 401
    assert denied.json()["error"]["type"] == "authentication_error"
    assert allowed.status_code == 200
    assert limited.status_code == 429
    assert limited.headers["retry-after"] == "60"


def test_claude_thinking_block_precedes_text(server: EmulatorServer) -> None:
    response = requests.post(
        f"{server.url}/v1/messages",
        json={
            "model": "claude-haiku-4-5",
            "max_tokens": 512,
            "thinking": {"enabled": True, "budget_tokens": 1024},
            "messages": [{"role": "user", "content": "hello"}],
        },
        timeout=5,
    )

    assert response.status_code == 200
    content = response.json()["content"]
    assert [block["type"] for block in content] == ["thinking", "text"]
    assert content[0]["thinking"]
    assert content[0]["signature"]


def _raw_request(server: EmulatorServer, request: bytes) -> bytes:
    with socket.create_connection(("127.0.0.1", server.server_port), timeout=5) as client:
        client.sendall(request)
        chunks: list[bytes] = []
        while True:
            chunk = client.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


def test_invalid_content_length_is_a_malformed_request(server: EmulatorServer) -> None:
    raw = _raw_request(
        server,
        b"POST /v1/chat/completions HTTP/1.1\r\n"
        b"Host: localhost\r\n"
        b"Content-Type: application/json\r\n"
        b"Content-Length: abc\r\n"
        b"\r\n",
    )

    head, _, body = raw.partition(b"\r\n\r\n")
    assert head.split(b"\r\n")[0].split(b" ")[1] == b"400"
    assert json.loads(body)["error"]["type"] == "invalid_request_error"
    assert requests.get(f"{server.url}/health", timeout=5).text == "ok"


def test_client_disconnect_mid_stream_stops_quietly(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="tokenipsum")
    config = _config(server={"stream_delay_ms": 20}, content={"words_per_chunk": 1})
    body = json.dumps(
        {
            "model": "claude-haiku-4-5",
            "max_tokens": 512,
            "stream": True,
            "messages": [{"role": "user", "content": "hello"}],
        }
    ).encode("utf-8")

    with start_server(config) as (running, _thread):
        client = socket.create_connection(("127.0.0.1", running.server_port), timeout=5)
        client.sendall(
            b"POST /v1/messages HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Content-Type: application/json\r\n"
            + f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
            + body
        )
        assert client.recv(1024).startswith(b"HTTP/1.1 200")
        client.close()

        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if any(record.getMessage().startswith("client disconnected") for record in caplog.records):
                break
            time.sleep(0.05)

        health = requests.get(f"{running.url}/health", timeout=5)

    assert any(record.getMessage().startswith("client disconnected") for record in caplog.records)
    assert not [record for record in caplog.records if record.levelno >= logging.ERROR]
    assert health.text == "ok"
