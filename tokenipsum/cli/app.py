import json
from importlib.metadata import PackageNotFoundError, version as package_version
import logging
import os
from pathlib import Path
import signal
import threading
from typing import Any

import httpx
import typer

from tokenipsum.config import Config, ConfigError, resolve_config
from tokenipsum.core.types import PROVIDERS
from tokenipsum.server import EmulatorServer, create_server
from tokenipsum.validation import SAMPLE_REQUESTS, compare_structure, fetch_provider_response

app = typer.Typer(help="tokenipsum LLM API emulator")

logger = logging.getLogger(__name__)

_ENDPOINTS = {
    "cerebras": ("POST /v1/chat/completions",),
    "gemini": (
        "POST /v1beta/models/{model}:generateContent",
        "POST /v1beta/models/{model}:streamGenerateContent",
    ),
    "claude": ("POST /v1/messages",),
    "openai": ("POST /v1/responses",),
}


def _resolve_cli_version() -> str:
    try:
        return package_version("tokenipsum")
    except PackageNotFoundError:
        from tokenipsum import __version__ as local_version

        return local_version


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(_resolve_cli_version(), color=False)
    raise typer.Exit()


@app.callback()
def app_options(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show tokenipsum version and exit.",
    ),
) -> None:
    """Emulate LLM provider APIs with synthetic responses."""


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.strip().upper())
    if not isinstance(numeric, int):
        typer.echo(f"unknown log level: {level}", err=True)
        raise typer.Exit(code=2)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config_or_exit(config_path: Path | None, *, port: int | None = None) -> Config:
    try:
        return resolve_config(config_path, port=port)
    except ConfigError as error:
        typer.echo(f"config error: {error}", err=True)
        raise typer.Exit(code=2) from error


def _log_startup(config: Config, server: EmulatorServer) -> None:
    logger.info("tokenipsum listening on %s", server.url)
    for provider in config.providers.enabled():
        for endpoint in _ENDPOINTS[provider]:
            logger.info("  %-8s %s", provider, endpoint)
    if config.rate_limit.enabled:
        logger.info(
            "rate limit: %d requests/min, fail after %d requests",
            config.rate_limit.requests_per_minute,
            config.rate_limit.fail_after_requests,
        )
    if config.errors.error_rate > 0:
        logger.info("random error rate: %.1f%%", config.errors.error_rate * 100)
    if config.errors.force_error != "none":
        logger.info("forcing error: %s", config.errors.force_error)
    if config.auth.require_auth:
        logger.info("auth required: %d valid keys", len(config.auth.valid_keys))


@app.command()
def serve(
    host: str | None = typer.Option(
        None,
        "--host",
        help="Host interface to bind (defaults to server.host from config).",
    ),
    port: int | None = typer.Option(
        None,
        "--port",
        envvar="PORT",
        help="Port to listen on (0 selects an ephemeral port).",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        envvar="CONFIG",
        help="Path to a TOML config file.",
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        envvar="LOG_LEVEL",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Run the emulator until interrupted."""
    _configure_logging(log_level)
    config = _load_config_or_exit(config_path, port=port)
    if host is not None:
        config = config.with_host(host)

    try:
        server = create_server(config)
    except OSError as error:
        typer.echo(f"serve failed: {error}", err=True)
        raise typer.Exit(code=1) from error

    def _handle_signal(_signum: int, _frame: Any) -> None:
        # shutdown() waits for serve_forever to return, which runs on this thread.
        threading.Thread(target=server.shutdown, daemon=True).start()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    _log_startup(config, server)
    try:
        server.serve_forever(poll_interval=0.2)
    finally:
        server.server_close()
        logger.info("tokenipsum stopped")


@app.command("config")
def show_config(
    config_path: Path | None = typer.Option(
        None,
        "--config",
        envvar="CONFIG",
        help="Path to a TOML config file.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Emit the effective configuration as JSON.",
    ),
) -> None:
    """Print the effective configuration."""
    config = _load_config_or_exit(config_path)
    payload = config.to_dict()
    if as_json:
        typer.echo(json.dumps(payload, ensure_ascii=True, sort_keys=True, separators=(",", ":")))
        return
    for section, values in payload.items():
        typer.echo(f"[{section}]")
        for key, value in values.items():
            typer.echo(f"{key} = {json.dumps(value)}")


@app.command()
def compare(
    provider: str = typer.Option(
        ...,
        "--provider",
        help=f"Provider to compare ({', '.join(PROVIDERS)}).",
    ),
    real_url: str = typer.Option(
        ...,
        "--real-url",
        help="Base URL of the real provider API.",
    ),
    mock_url: str = typer.Option(
        "http://localhost:8787",
        "--mock-url",
        help="Base URL of a running tokenipsum server.",
    ),
    api_key_env: str | None = typer.Option(
        None,
        "--api-key-env",
        help="Environment variable holding the real API key.",
    ),
    model: str | None = typer.Option(
        None,
        "--model",
        help="Model name to request from both endpoints.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Emit the structure diff as JSON.",
    ),
) -> None:
    """Compare response key structure between a real API and the emulator."""
    normalized = provider.strip().lower()
    if normalized not in SAMPLE_REQUESTS:
        typer.echo(f"unknown provider: {provider}", err=True)
        raise typer.Exit(code=2)

    env_name = api_key_env or SAMPLE_REQUESTS[normalized].api_key_env
    api_key = os.environ.get(env_name, "").strip()
    if not api_key:
        typer.echo(f"missing API key: set {env_name}", err=True)
        raise typer.Exit(code=2)

    try:
        real = fetch_provider_response(normalized, real_url, api_key=api_key, model=model)
        mock = fetch_provider_response(normalized, mock_url, model=model)
    except httpx.HTTPError as error:
        typer.echo(f"compare failed: {error}", err=True)
        raise typer.Exit(code=1) from error

    diff = compare_structure(real, mock)
    if as_json:
        typer.echo(
            json.dumps(
                {"provider": normalized, **diff.to_dict()},
                ensure_ascii=True,
                sort_keys=True,
                separators=(",", ":"),
            )
        )
    elif diff.matches:
        typer.echo(f"{normalized}: structures match")
    else:
        typer.echo(f"{normalized}: structures differ")
        for key in sorted(diff.missing_in_mock):
            typer.echo(f"  missing in mock: {key}")
        for key in sorted(diff.extra_in_mock):
            typer.echo(f"  extra in mock:   {key}")

    if diff.missing_in_mock:
        raise typer.Exit(code=1)


def main() -> None:
    app()
