"""Error simulation gate evaluated before content generation."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import random
import threading
from typing import Mapping

from tokenipsum.config import Config
from tokenipsum.core.types import RANDOM_ERROR_KINDS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Process-lifetime request counter with a failure threshold.

    ``threshold`` is ``rate_limit.fail_after_requests``; a threshold of 0 never
    trips. The counter is never reset.
    """

    def __init__(self, threshold: int = 0, *, enabled: bool = True) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")
        self.threshold = threshold
        self.enabled = enabled
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def increment(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def exceeded(self, count: int) -> bool:
        return self.enabled and self.threshold > 0 and count > self.threshold


@dataclass(frozen=True, slots=True)
class GateDecision:
    sequence: int
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.error is None


class ErrorSimulator:
    """Decide whether a request fails, and how, before generation runs.

    Checks run in a fixed order and the first match wins: auth, forced error,
    rate limit, random error.
    """

    def __init__(
        self,
        config: Config,
        *,
        rate_limiter: RateLimiter | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(
            config.rate_limit.fail_after_requests,
            enabled=config.rate_limit.enabled,
        )
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()

    def evaluate(self, api_key: str | None) -> GateDecision:
        sequence = self.rate_limiter.increment()

        if self.config.auth.require_auth and not self.is_valid_key(api_key):
            return self._fail(sequence, "unauthorized", "invalid or missing API key")

        forced = self.config.errors.forced_kind()
        if forced is not None:
            return self._fail(sequence, forced, "forced by errors.force_error")

        if self.rate_limiter.exceeded(sequence):
            return self._fail(
                sequence,
                "rate_limited",
                f"request {sequence} exceeds fail_after_requests={self.rate_limiter.threshold}",
            )

        error_rate = self.config.errors.error_rate
        if error_rate > 0.0:
            with self._rng_lock:
                if self._rng.random() < error_rate:
                    kind = self._rng.choice(RANDOM_ERROR_KINDS)
                    return self._fail(sequence, kind, f"random draw at error_rate={error_rate}")

        return GateDecision(sequence=sequence)

    def is_valid_key(self, api_key: str | None) -> bool:
        if not self.config.auth.require_auth:
            return True
        if api_key is None:
            return False
        return api_key in self.config.auth.valid_keys

    def _fail(self, sequence: int, kind: str, reason: str) -> GateDecision:
        logger.info("request %d failed gate with %s: %s", sequence, kind, reason)
        return GateDecision(sequence=sequence, error=kind)


def extract_api_key(
    headers: Mapping[str, str],
    query: Mapping[str, str] | None = None,
) -> str | None:
    """Find the caller's key in the places provider SDKs send it."""
    normalized = {str(key).lower(): str(value) for key, value in headers.items()}
    authorization = normalized.get("authorization", "").strip()
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer":
            return token.strip() or None
        return authorization
    for header in ("x-api-key", "x-goog-api-key"):
        value = normalized.get(header, "").strip()
        if value:
            return value
    if query:
        value = str(query.get("key", "")).strip()
        if value:
            return value
    return None
