# src/ffxi_ai/llm/ollama.py

"""
Native Ollama client running on the dispatcher.

Every request is a short HTTP/1.1 exchange (Connection: close) over a dispatcher-managed
socket, so several prompts can be in flight at once inside one thread. Must be awaited
from a dispatcher task.
"""

from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from ..dispatch import sockets
from ..dispatch.dispatcher import Dispatcher
from ..dispatch.errors import DispatchTimeout
from .errors import OllamaConnectionError, OllamaError, OllamaModelError, OllamaTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    reason: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class OllamaClient:
    def __init__(
        self,
        dispatcher: Dispatcher,
        base_url: str,
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
    ) -> None:
        parts = urlsplit(base_url)
        if parts.scheme != "http":
            raise OllamaError(
                f"Unsupported Ollama URL {base_url!r}: the native backend only speaks plain http://"
            )
        self.dispatcher = dispatcher
        self.base_url = base_url.rstrip("/")
        self.host = parts.hostname or "localhost"
        self.port = parts.port or 80
        self.base_path = parts.path.rstrip("/")
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

        # Resolved once, here: getaddrinfo blocks, and inside a task it would stall every
        # other task. Clients are built by the command layer before its tasks start.
        try:
            self._family, self._type, self._proto, _, self._addr = socket.getaddrinfo(
                self.host, self.port, type=socket.SOCK_STREAM
            )[0]
        except socket.gaierror as e:
            raise OllamaConnectionError(f"Cannot resolve {self.host}: {e}") from e

    async def generate(self, prompt: str, model: str) -> str:
        payload = {"model": model, "prompt": prompt, "stream": False}
        logger.info("Ollama: generate model=%s (%d chars)", model, len(prompt))
        data = _decode(await self._request("POST", "/api/generate", payload))
        text = data.get("response")
        if not isinstance(text, str):
            raise OllamaError("Ollama reply has no 'response' text")
        return text

    async def list_models(self) -> list[str]:
        data = _decode(await self._request("GET", "/api/tags"))
        models = data.get("models") or []
        return [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> HttpResponse:
        body = b"" if payload is None else json.dumps(payload).encode("utf-8")
        head = (
            f"{method} {self.base_path}{path} HTTP/1.1\r\n"
            f"Host: {self.host}:{self.port}\r\n"
            "Accept: application/json\r\n"
            "Content-Type: application/json\r\n"
            f"Content-Length: {len(body)}\r\n"
            "Connection: close\r\n"
            "\r\n"
        ).encode("latin-1")

        d = self.dispatcher
        sock = socket.socket(self._family, self._type, self._proto)
        try:
            await sockets.connect(d, sock, self._addr[0], self._addr[1], timeout=self.connect_timeout)
            await sockets.send(d, sock, head + body, timeout=self.read_timeout)
            return await _read_response(d, sock, self.read_timeout)
        except DispatchTimeout as e:
            raise OllamaTimeoutError(f"Ollama request timed out ({e})") from e
        except ConnectionError as e:
            raise OllamaConnectionError(f"Cannot connect to Ollama at {self.base_url}: {e}") from e
        except OSError as e:
            raise OllamaError(f"Socket error talking to Ollama: {e}") from e
        finally:
            d.close(sock)


async def _read_response(d: Dispatcher, sock: socket.socket, timeout: float) -> HttpResponse:
    status_line = (await sockets.receive(d, sock, sockets.LINE, timeout=timeout)).decode("latin-1")
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
        raise OllamaError(f"Malformed HTTP status line: {status_line!r}")
    status = int(parts[1])
    reason = parts[2] if len(parts) > 2 else ""

    headers: dict[str, str] = {}
    while True:
        line = (await sockets.receive(d, sock, sockets.LINE, timeout=timeout)).decode("latin-1")
        if not line:
            break
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()

    if headers.get("transfer-encoding", "").lower() == "chunked":
        body = await _read_chunked(d, sock, timeout)
    elif "content-length" in headers:
        try:
            length = int(headers["content-length"])
        except ValueError:
            raise OllamaError(f"Bad Content-Length: {headers['content-length']!r}") from None
        body = await sockets.receive(d, sock, length, timeout=timeout)
        if len(body) < length:
            raise OllamaError(f"Truncated reply ({len(body)} of {length} bytes)")
    else:
        body = await sockets.receive(d, sock, sockets.ALL, timeout=timeout)

    return HttpResponse(status=status, reason=reason, headers=headers, body=body)


async def _read_chunked(d: Dispatcher, sock: socket.socket, timeout: float) -> bytes:
    chunks: list[bytes] = []
    while True:
        size_line = (await sockets.receive(d, sock, sockets.LINE, timeout=timeout)).split(b";", 1)[0]
        try:
            size = int(size_line.strip(), 16)
        except ValueError:
            raise OllamaError(f"Bad chunk size line: {size_line!r}") from None
        if size == 0:
            # Skip trailers up to the blank line (or EOF).
            while await sockets.receive(d, sock, sockets.LINE, timeout=timeout):
                pass
            return b"".join(chunks)
        data = await sockets.receive(d, sock, size, timeout=timeout)
        if len(data) < size:
            raise OllamaError("Truncated chunked reply")
        chunks.append(data)
        await sockets.receive(d, sock, sockets.LINE, timeout=timeout)


def _decode(resp: HttpResponse) -> dict[str, Any]:
    try:
        data: Any = json.loads(resp.body.decode("utf-8")) if resp.body else {}
    except (UnicodeDecodeError, json.JSONDecodeError):
        data = None

    if not 200 <= resp.status < 300:
        message = data.get("error") if isinstance(data, dict) else None
        message = message or resp.reason or "no details"
        if resp.status == 404:
            raise OllamaModelError(str(message))
        raise OllamaError(f"HTTP {resp.status}: {message}", recoverable=resp.status >= 500)

    if not isinstance(data, dict):
        raise OllamaError("Ollama returned invalid JSON")
    return data
