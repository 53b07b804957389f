"""TOML configuration for the emulator server."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import os
from pathlib import Path
import tomllib
from typing import Any, Mapping

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.toml")
CONFIG_ENV_VAR = "CONFIG"
PORT_ENV_VAR = "PORT"

FORCE_ERROR_VALUES = ("none", "unauthorized", "rate_limit", "server_error", "timeout")

_FORCE_ERROR_KINDS = {
    "unauthorized": "unauthorized",
    "rate_limit": "rate_limited",
    "server_error": "server_error",
    "timeout": "timeout",
}


class ConfigError(ValueError):
    """Raised when a configuration file or value is invalid."""


@dataclass(frozen=True, slots=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8787
    latency_ms: int = 0
    stream_delay_ms: int = 15


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    enabled: bool = False
    requests_per_minute: int = 60
    fail_after_requests: int = 0


@dataclass(frozen=True, slots=True)
class ErrorConfig:
    error_rate: float = 0.0
    force_error: str = "none"
    timeout_ms: int = 30_000

    def forced_kind(self) -> str | None:
        return _FORCE_ERROR_KINDS.get(self.force_error)


@dataclass(frozen=True, slots=True)
class AuthConfig:
    require_auth: bool = False
    valid_keys: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    cerebras: bool = True
    gemini: bool = True
    claude: bool = True
    openai: bool = True

    def is_enabled(self, provider: str) -> bool:
        return bool(getattr(self, provider, False))

    def enabled(self) -> tuple[str, ...]:
        return tuple(
            name for name in ("cerebras", "gemini", "claude", "openai") if self.is_enabled(name)
        )


@dataclass(frozen=True, slots=True)
class ContentConfig:
    deterministic: bool = False
    seed: int = 42
    words_per_chunk: int = 3


@dataclass(frozen=True, slots=True)
class Config:
    """Fully-populated emulator configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    errors: ErrorConfig = field(default_factory=ErrorConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    content: ContentConfig = field(default_factory=ContentConfig)

    def with_port(self, port: int) -> "Config":
        _check_port(port, name="port")
        return replace(self, server=replace(self.server, port=port))

    def with_host(self, host: str) -> "Config":
        if not host.strip():
            raise ConfigError("host must be a non-empty string")
        return replace(self, server=replace(self.server, host=host.strip()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "latency_ms": self.server.latency_ms,
                "stream_delay_ms": self.server.stream_delay_ms,
            },
            "rate_limit": {
                "enabled": self.rate_limit.enabled,
                "requests_per_minute": self.rate_limit.requests_per_minute,
                "fail_after_requests": self.rate_limit.fail_after_requests,
            },
            "errors": {
                "error_rate": self.errors.error_rate,
                "force_error": self.errors.force_error,
                "timeout_ms": self.errors.timeout_ms,
            },
            "auth": {
                "require_auth": self.auth.require_auth,
                "valid_keys": list(self.auth.valid_keys),
            },
            "providers": {
                "cerebras": self.providers.cerebras,
                "gemini": self.providers.gemini,
                "claude": self.providers.claude,
                "openai": self.providers.openai,
            },
            "content": {
                "deterministic": self.content.deterministic,
                "seed": self.content.seed,
                "words_per_chunk": self.content.words_per_chunk,
            },
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Config":
        server = _section(raw, "server")
        rate_limit = _section(raw, "rate_limit")
        errors = _section(raw, "errors")
        auth = _section(raw, "auth")
        providers = _section(raw, "providers")
        content = _section(raw, "content")

        defaults = cls()
        port = _int(server, "server.port", defaults.server.port, minimum=0)
        _check_port(port, name="server.port")

        error_rate = _float(errors, "errors.error_rate", defaults.errors.error_rate)
        if not 0.0 <= error_rate <= 1.0:
            raise ConfigError("errors.error_rate must be between 0.0 and 1.0")
        force_error = _str(errors, "errors.force_error", defaults.errors.force_error)
        force_error = force_error.strip().lower()
        if force_error not in FORCE_ERROR_VALUES:
            raise ConfigError(
                f"errors.force_error must be one of: {', '.join(FORCE_ERROR_VALUES)}"
            )

        raw_keys = auth.get("valid_keys", [])
        if not isinstance(raw_keys, list) or not all(isinstance(key, str) for key in raw_keys):
            raise ConfigError("auth.valid_keys must be a list of strings")

        words_per_chunk = _int(
            content,
            "content.words_per_chunk",
            defaults.content.words_per_chunk,
            minimum=1,
        )

        return cls(
            server=ServerConfig(
                host=_str(server, "server.host", defaults.server.host),
                port=port,
                latency_ms=_int(server, "server.latency_ms", defaults.server.latency_ms, minimum=0),
                stream_delay_ms=_int(
                    server,
                    "server.stream_delay_ms",
                    defaults.server.stream_delay_ms,
                    minimum=0,
                ),
            ),
            rate_limit=RateLimitConfig(
                enabled=_bool(rate_limit, "rate_limit.enabled", defaults.rate_limit.enabled),
                requests_per_minute=_int(
                    rate_limit,
                    "rate_limit.requests_per_minute",
                    defaults.rate_limit.requests_per_minute,
                    minimum=0,
                ),
                fail_after_requests=_int(
                    rate_limit,
                    "rate_limit.fail_after_requests",
                    defaults.rate_limit.fail_after_requests,
                    minimum=0,
                ),
            ),
            errors=ErrorConfig(
                error_rate=error_rate,
                force_error=force_error,
                timeout_ms=_int(errors, "errors.timeout_ms", defaults.errors.timeout_ms, minimum=0),
            ),
            auth=AuthConfig(
                require_auth=_bool(auth, "auth.require_auth", defaults.auth.require_auth),
                valid_keys=tuple(raw_keys),
            ),
            providers=ProviderConfig(
                cerebras=_bool(providers, "providers.cerebras", defaults.providers.cerebras),
                gemini=_bool(providers, "providers.gemini", defaults.providers.gemini),
                claude=_bool(providers, "providers.claude", defaults.providers.claude),
                openai=_bool(providers, "providers.openai", defaults.providers.openai),
            ),
            content=ContentConfig(
                deterministic=_bool(
                    content,
                    "content.deterministic",
                    defaults.content.deterministic,
                ),
                seed=_int(content, "content.seed", defaults.content.seed),
                words_per_chunk=words_per_chunk,
            ),
        )


def load_config(path: str | Path) -> Config:
    """Load config from a TOML file, falling back to defaults when it is missing."""
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("No config file found at %s, using defaults", config_path)
        return Config()
    except OSError as error:
        raise ConfigError(f"Unable to read config file ({config_path}): {error}") from error

    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as error:
        raise ConfigError(f"Invalid config TOML ({config_path}): {error}") from error

    config = Config.from_dict(raw)
    logger.info("Loaded config from %s", config_path)
    return config


def resolve_config(
    config_path: str | Path | None = None,
    *,
    port: int | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Resolve effective config from explicit arguments, then env vars, then defaults."""
    env = os.environ if environ is None else environ
    path = config_path or env.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config = load_config(path)

    if port is None:
        raw_port = env.get(PORT_ENV_VAR, "").strip()
        if raw_port:
            try:
                port = int(raw_port)
            except ValueError as error:
                raise ConfigError(f"{PORT_ENV_VAR} must be an integer, got {raw_port!r}") from error
    if port is not None:
        config = config.with_port(port)
    return config


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _check_port(port: int, *, name: str) -> None:
    if not 0 <= port <= 65535:
        raise ConfigError(f"{name} must be between 0 and 65535")


def _bool(section: Mapping[str, Any], name: str, default: bool) -> bool:
    value = section.get(name.rpartition(".")[2], default)
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be a boolean")
    return value


def _int(
    section: Mapping[str, Any],
    name: str,
    default: int,
    *,
    minimum: int | None = None,
) -> int:
    value = section.get(name.rpartition(".")[2], default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer")
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")
    return value


def _float(section: Mapping[str, Any], name: str, default: float) -> float:
    value = section.get(name.rpartition(".")[2], default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number")
    return float(value)


def _str(section: Mapping[str, Any], name: str, default: str) -> str:
    value = section.get(name.rpartition(".")[2], default)
    if not isinstance(value, str):
        raise ConfigError(f"{name} must be a string")
    return value
