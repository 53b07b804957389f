"""HTTP front end for the emulator engine."""

from __future__ import annotations

from contextlib import contextmanager
import gzip
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import io
import json
import logging
import socketserver
import threading
import time
from typing import Any, Callable, Iterator
from urllib.parse import parse_qsl, urlsplit
import zlib

import zstandard as zstd

from tokenipsum.config import Config
from tokenipsum.engine import EmulatorEngine, EngineResult
from tokenipsum.providers.registry import detect_route
from tokenipsum.streaming import encode_sse

logger = logging.getLogger(__name__)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Max-Age": "86400",
}


class BodyDecodeError(ValueError):
    """Raised when a request body cannot be decoded into JSON."""


class EmulatorServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True

    def server_bind(self) -> None:
        # Skip the reverse-DNS lookup done by HTTPServer.server_bind.
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = int(port)

    def __init__(
        self,
        server_address: tuple[str, int],
        engine: EmulatorEngine,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(server_address, EmulatorHandler)
        self.engine = engine
        self.sleep = sleep

    @property
    def url(self) -> str:
        host, port = self.server_address[:2]
        if host in {"0.0.0.0", ""}:
            host = "127.0.0.1"
        return f"http://{host}:{port}"


class EmulatorHandler(BaseHTTPRequestHandler):
    server: EmulatorServer
    protocol_version = "HTTP/1.1"
    _headers_sent = False

    def do_OPTIONS(self) -> None:  # noqa: N802
        self.send_response(204)
        self._send_cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlsplit(self.path)
        if parsed.path.rstrip("/") == "/health":
            self._write_text(200, "ok")
            return
        self._write_not_found()

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlsplit(self.path)
        route = detect_route(parsed.path)
        engine = self.server.engine
        if route is None or not engine.config.providers.is_enabled(route.provider):
            try:
                self._read_body()
            except BodyDecodeError:
                self.close_connection = True
            self._write_not_found()
            return

        try:
            payload = self._read_json_body()
        except BodyDecodeError as error:
            self.close_connection = True
            self._write_result(engine.malformed(route.provider, str(error)))
            return

        try:
            result = engine.handle(
                route.provider,
                payload,
                headers={str(key): str(value) for key, value in self.headers.items()},
                query=dict(parse_qsl(parsed.query, keep_blank_values=True)),
                model=route.model,
                stream=route.stream,
            )
            self._write_result(result)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("client disconnected from %s", parsed.path)
            self.close_connection = True
        except Exception:
            logger.exception("unhandled error serving %s", parsed.path)
            if self._headers_sent:
                self.close_connection = True
                return
            self._write_result(engine.internal_error(route.provider))

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def _read_body(self) -> bytes:
        raw_length = self.headers.get("Content-Length", "0") or "0"
        try:
            length = int(raw_length)
        except ValueError as error:
            raise BodyDecodeError(f"invalid Content-Length: {raw_length}") from error
        if length < 0:
            raise BodyDecodeError(f"invalid Content-Length: {raw_length}")
        return self.rfile.read(length) if length > 0 else b""

    def _read_json_body(self) -> Any:
        body = _decode_request_body(
            body=self._read_body(),
            content_encoding=self.headers.get("Content-Encoding"),
        )
        if not body:
            raise BodyDecodeError("request body is empty")
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as error:
            raise BodyDecodeError(f"request body is not valid JSON: {error}") from error

    def _write_result(self, result: EngineResult) -> None:
        if result.frames is not None:
            self._write_stream(result)
            return
        self._write_json(result.status_code, result.body or {}, headers=result.headers)

    def _write_stream(self, result: EngineResult) -> None:
        delay_ms = self.server.engine.config.server.stream_delay_ms
        self.send_response(result.status_code)
        self._send_cors_headers()
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Connection", "close")
        for name, value in result.headers.items():
            self.send_header(name, value)
        self.end_headers()
        self._headers_sent = True
        self.close_connection = True

        first = True
        for frame in result.frames or ():
            if not first and delay_ms > 0:
                self.server.sleep(delay_ms / 1000.0)
            first = False
            self.wfile.write(encode_sse(frame))
            self.wfile.flush()

    def _write_json(
        self,
        status_code: int,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status_code)
        self._send_cors_headers()
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self._headers_sent = True
        self.wfile.write(body)

    def _write_text(self, status_code: int, text: str) -> None:
        body = text.encode("utf-8")
        self.send_response(status_code)
        self._send_cors_headers()
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _write_not_found(self) -> None:
        self._write_json(404, {"error": {"message": "Not found", "code": 404}})

    def _send_cors_headers(self) -> None:
        for name, value in _CORS_HEADERS.items():
            self.send_header(name, value)


def _decode_request_body(*, body: bytes, content_encoding: str | None) -> bytes:
    if not content_encoding:
        return body
    encodings = [entry.strip().lower() for entry in content_encoding.split(",") if entry.strip()]

    decoded = body
    for encoding in reversed(encodings):
        if encoding == "identity":
            continue
        try:
            if encoding == "gzip":
                decoded = gzip.decompress(decoded)
            elif encoding == "deflate":
                try:
                    decoded = zlib.decompress(decoded)
                except zlib.error:
                    decoded = zlib.decompress(decoded, -zlib.MAX_WBITS)
            elif encoding == "zstd":
                decoded = _decode_zstd(decoded)
            else:
                raise BodyDecodeError(f"unsupported content encoding: {encoding}")
        except (OSError, EOFError, zlib.error, zstd.ZstdError) as error:
            raise BodyDecodeError(f"invalid {encoding} request body") from error
    return decoded


def _decode_zstd(body: bytes) -> bytes:
    decompressor = zstd.ZstdDecompressor()
    try:
        return decompressor.decompress(body)
    except zstd.ZstdError:
        # Frames written without a content size need the streaming reader.
        with decompressor.stream_reader(io.BytesIO(body)) as reader:
            return reader.read()


def create_server(config: Config, *, engine: EmulatorEngine | None = None) -> EmulatorServer:
    return EmulatorServer(
        (config.server.host, config.server.port),
        engine or EmulatorEngine(config),
    )


@contextmanager
def start_server(
    config: Config,
    *,
    engine: EmulatorEngine | None = None,
) -> Iterator[tuple[EmulatorServer, threading.Thread]]:
    server = create_server(config, engine=engine)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server, thread
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)
