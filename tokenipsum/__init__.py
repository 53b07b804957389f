"""Stable public API surface for tokenipsum.

This module is the supported import path for library users.
"""

from __future__ import annotations

from tokenipsum.config import Config, ConfigError, load_config, resolve_config
from tokenipsum.core import CanonicalRequest, CanonicalResponse
from tokenipsum.engine import EmulatorEngine, EngineResult
from tokenipsum.gate import ErrorSimulator, RateLimiter
from tokenipsum.generator import ContentGenerator
from tokenipsum.providers import MalformedRequestError, get_provider_adapter
from tokenipsum.server import create_server, start_server

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CanonicalRequest",
    "CanonicalResponse",
    "Config",
    "ConfigError",
    "ContentGenerator",
    "EmulatorEngine",
    "EngineResult",
    "ErrorSimulator",
    "MalformedRequestError",
    "RateLimiter",
    "create_server",
    "get_provider_adapter",
    "load_config",
    "resolve_config",
    "start_server",
]
