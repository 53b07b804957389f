import random

import pytest

from tokenipsum.config import Config
from tokenipsum.engine import EmulatorEngine
from tokenipsum.providers import ProviderRegistryError

_CHAT_BODY = {"model": "llama", "messages": [{"role": "user", "content": "hello"}]}


def _engine(config: Config | None = None, **kwargs: object) -> tuple[EmulatorEngine, list[float]]:
    sleeps: list[float] = []
    engine = EmulatorEngine(
        config or Config(),
        sleep=sleeps.append,
        content_rng_factory=lambda: random.Random(5),
        **kwargs,
    )
    return engine, sleeps


def test_successful_non_streaming_request() -> None:
    engine, sleeps = _engine()

    result = engine.handle("cerebras", _CHAT_BODY)

    assert result.status_code == 200
    assert not result.is_stream
    assert result.body is not None
    assert result.body["choices"][0]["finish_reason"] == "stop"
    assert result.body["id"].startswith("chatcmpl-000001")
    assert sleeps == []


def test_malformed_request_is_rejected_before_the_gate() -> None:
    engine, _ = _engine()

    result = engine.handle("claude", {"model": "m", "messages": []})

    assert result.status_code == 400
    assert result.body["type"] == "error"
    assert engine.simulator.rate_limiter.count == 0


def test_gate_error_uses_provider_envelope_and_no_frames() -> None:
    engine, _ = _engine(Config.from_dict({"errors": {"force_error": "server_error"}}))

    result = engine.handle(
        "gemini",
        {"contents": [{"parts": [{"text": "hi"}]}]},
        model="gemini-2.0-flash",
        stream=True,
    )

    assert result.status_code == 500
    assert result.frames is None
    assert result.body["error"]["status"] == "INTERNAL"


def test_rate_limit_headers_advertise_requests_per_minute() -> None:
    engine, _ = _engine(
        Config.from_dict(
            {"rate_limit": {"enabled": True, "fail_after_requests": 1, "requests_per_minute": 90}}
        )
    )

    first = engine.handle("cerebras", _CHAT_BODY)
    second = engine.handle("cerebras", _CHAT_BODY)

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.headers["x-ratelimit-limit-requests"] == "90"


def test_auth_reads_key_from_headers_and_query() -> None:
    engine, _ = _engine(
        Config.from_dict({"auth": {"require_auth": True, "valid_keys": ["sk-test"]}})
    )
    gemini_body = {"contents": [{"parts": [{"text": "hi"}]}]}

    assert engine.handle("cerebras", _CHAT_BODY).status_code == 401
    assert (
        engine.handle("cerebras", _CHAT_BODY, headers={"Authorization": "Bearer sk-test"}).status_code
        == 200
    )
    assert engine.handle("gemini", gemini_body, query={"key": "sk-test"}, model="g").status_code == 200
    assert engine.handle("gemini", gemini_body, query={"key": "nope"}, model="g").status_code == 401


def test_timeout_holds_request_then_serves_normally() -> None:
    engine, sleeps = _engine(
        Config.from_dict({"errors": {"force_error": "timeout", "timeout_ms": 1500}})
    )

    result = engine.handle("openai", {"model": "m", "input": "hi"})

    assert result.status_code == 200
    assert sleeps == [1.5]
    assert result.body["status"] == "completed"


def test_latency_is_applied_after_parsing() -> None:
    engine, sleeps = _engine(Config.from_dict({"server": {"latency_ms": 250}}))

    engine.handle("cerebras", {"model": "m"})
    assert sleeps == []

    engine.handle("cerebras", _CHAT_BODY)
    assert sleeps == [0.25]


def test_stream_override_forces_streaming() -> None:
    engine, _ = _engine()

    result = engine.handle(
        "gemini",
        {"contents": [{"parts": [{"text": "hi"}]}]},
        model="gemini-2.0-flash",
        stream=True,
    )

    assert result.is_stream
    frames = list(result.frames)
    assert frames[-1].data["candidates"][0]["finishReason"] == "STOP"


def test_deterministic_stream_matches_non_stream_text() -> None:
    config = Config.from_dict({"content": {"deterministic": True, "seed": 99}})
    engine = EmulatorEngine(config, sleep=lambda _seconds: None)

    plain = engine.handle("cerebras", _CHAT_BODY)
    streamed = engine.handle("cerebras", {**_CHAT_BODY, "stream": True})

    frames = [frame for frame in streamed.frames if isinstance(frame.data, dict)]
    text = "".join(frame.data["choices"][0]["delta"].get("content", "") for frame in frames)
    assert text == plain.body["choices"][0]["message"]["content"]
    assert frames[0].data["id"] != plain.body["id"]


def test_disabled_provider_is_not_served() -> None:
    engine, _ = _engine(Config.from_dict({"providers": {"claude": False}}))

    with pytest.raises(ProviderRegistryError):
        engine.handle("claude", {})


def test_internal_error_and_malformed_helpers() -> None:
    engine, _ = _engine()

    assert engine.internal_error("claude").status_code == 500
    malformed = engine.malformed("openai", "request body is not valid JSON")
    assert malformed.status_code == 400
    assert malformed.body["error"]["message"] == "request body is not valid JSON"
