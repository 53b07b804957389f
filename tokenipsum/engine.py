"""Request pipeline shared by every provider endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import random
import time
from typing import Any, Callable, Iterator, Mapping

from tokenipsum.config import Config
from tokenipsum.gate import ErrorSimulator, extract_api_key
from tokenipsum.generator import ContentGenerator
from tokenipsum.providers.base import ErrorPayload, ProviderAdapter
from tokenipsum.providers.exceptions import MalformedRequestError, ProviderRegistryError
from tokenipsum.providers.registry import get_provider_adapter
from tokenipsum.streaming import Frame

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineResult:
    """Outcome of one request: a JSON body or a lazy frame stream."""

    provider: str
    status_code: int
    body: dict[str, Any] | None = None
    frames: Iterator[Frame] | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_stream(self) -> bool:
        return self.frames is not None


class EmulatorEngine:
    """Parse, gate, generate and serialize a single provider request."""

    def __init__(
        self,
        config: Config,
        *,
        simulator: ErrorSimulator | None = None,
        generator: ContentGenerator | None = None,
        sleep: Callable[[float], None] = time.sleep,
        content_rng_factory: Callable[[], random.Random] | None = None,
    ) -> None:
        self.config = config
        self.simulator = simulator or ErrorSimulator(config)
        self.generator = generator or ContentGenerator()
        self._sleep = sleep
        self._content_rng_factory = content_rng_factory or self._default_content_rng
        self._adapters: dict[str, ProviderAdapter] = {
            key: get_provider_adapter(key) for key in config.providers.enabled()
        }

    def adapter(self, provider: str) -> ProviderAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise ProviderRegistryError(f"Provider '{provider}' is not enabled.") from None

    def handle(
        self,
        provider: str,
        payload: Any,
        *,
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, str] | None = None,
        model: str | None = None,
        stream: bool | None = None,
    ) -> EngineResult:
        adapter = self.adapter(provider)
        try:
            request = adapter.parse(payload, model=model)
        except MalformedRequestError as error:
            logger.info("%s request rejected: %s", provider, error)
            return self._error_result(provider, adapter.serialize_malformed(str(error)))

        self._delay_ms(self.config.server.latency_ms)

        decision = self.simulator.evaluate(extract_api_key(headers or {}, query))
        if decision.error == "timeout":
            logger.info(
                "request %d held for %d ms to simulate a timeout",
                decision.sequence,
                self.config.errors.timeout_ms,
            )
            self._delay_ms(self.config.errors.timeout_ms)
        elif decision.error is not None:
            return self._error_result(
                provider,
                adapter.serialize_error(
                    decision.error,
                    requests_per_minute=self.config.rate_limit.requests_per_minute,
                ),
            )

        response = self.generator.generate(
            request,
            rng=self._content_rng_factory(),
            sequence=decision.sequence,
        )
        logger.debug(
            "request %d served by %s: stop_reason=%s completion_tokens=%d",
            decision.sequence,
            provider,
            response.stop_reason,
            response.usage.completion_tokens,
        )

        wants_stream = request.stream if stream is None else stream
        if wants_stream:
            frames = adapter.stream(
                response,
                request,
                words_per_chunk=self.config.content.words_per_chunk,
            )
            return EngineResult(provider=provider, status_code=200, frames=frames)
        return EngineResult(
            provider=provider,
            status_code=200,
            body=adapter.serialize(response, request),
        )

    def internal_error(self, provider: str) -> EngineResult:
        """The provider's 500 envelope, for failures outside the simulated ones."""
        return self._error_result(provider, self.adapter(provider).serialize_error("server_error"))

    def malformed(self, provider: str, message: str) -> EngineResult:
        return self._error_result(provider, self.adapter(provider).serialize_malformed(message))

    def _default_content_rng(self) -> random.Random:
        if self.config.content.deterministic:
            return random.Random(self.config.content.seed)
        return random.Random()

    def _delay_ms(self, milliseconds: int) -> None:
        if milliseconds > 0:
            self._sleep(milliseconds / 1000.0)

    @staticmethod
    def _error_result(provider: str, payload: ErrorPayload) -> EngineResult:
        return EngineResult(
            provider=provider,
            status_code=payload.status_code,
            body=payload.body,
            headers=dict(payload.headers),
        )
