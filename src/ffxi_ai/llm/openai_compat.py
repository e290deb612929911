# src/ffxi_ai/llm/openai_compat.py

"""
OpenAI-compatible backend (Ollama serves one under /v1).

Unlike the native client this one blocks: the console waits for each reply in turn.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
import openai
from openai import OpenAI

from .errors import OllamaConnectionError, OllamaError, OllamaModelError, OllamaTimeoutError

logger = logging.getLogger(__name__)


def _make_timeout_obj(connect_s: float, read_s: float) -> httpx.Timeout:
    return httpx.Timeout(
        connect=connect_s,
        read=read_s,
        write=10.0,
        pool=connect_s,
    )


def _close_stream(stream: Any) -> None:
    """Close a streaming response; not all SDK versions expose close()."""
    close = getattr(stream, "close", None)
    if callable(close):
        close()


def _translate_error(exc: Exception, model: str) -> OllamaError:
    # APITimeoutError subclasses APIConnectionError, so it goes first.
    if isinstance(exc, openai.APITimeoutError):
        return OllamaTimeoutError(f"Request to model {model} timed out")
    if isinstance(exc, openai.APIConnectionError):
        return OllamaConnectionError(f"Cannot connect to the OpenAI-compatible endpoint: {exc}")
    if isinstance(exc, openai.NotFoundError):
        return OllamaModelError(f"Model not available: {model}")
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return OllamaError("Authentication failed. Check FFXI_AI_OPENAI_API_KEY.")
    if isinstance(exc, openai.RateLimitError):
        return OllamaError("Rate-limited. Try again later.", recoverable=True)
    return OllamaError(f"{exc.__class__.__name__}: {exc}")


class OpenAICompatClient:
    def __init__(self, settings: Any, *, client: OpenAI | None = None) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self) -> OpenAI:
        """
        Lazily create and cache the SDK client.

        Automatic retries are disabled; the caller reports failures straight away.
        """
        if self._client is not None:
            return self._client

        s = self._settings
        self._client = OpenAI(
            base_url=str(s.openai_base_url),
            api_key=str(s.openai_api_key),
            timeout=_make_timeout_obj(connect_s=s.connect_timeout, read_s=s.read_timeout),
            max_retries=0,
        )
        return self._client

    def complete(self, prompt: str, model: str) -> str:
        client = self._get_client()
        logger.info("LLM: trying model=%s via OpenAI-compatible endpoint", model)
        t0 = time.monotonic()

        stream = None
        pieces: list[str] = []
        try:
            stream = client.chat.completions.create(
                model=model,
                stream=True,
                messages=[{"role": "user", "content": prompt}],
            )
            for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                content = getattr(delta, "content", None) if delta is not None else None
                if content:
                    pieces.append(content)
        except openai.OpenAIError as e:
            raise _translate_error(e, model) from e
        finally:
            if stream is not None:
                _close_stream(stream)

        if not pieces:
            raise OllamaError(f"Model returned no content: {model}")
        logger.debug("LLM: completed with model=%s in %.2fs", model, time.monotonic() - t0)
        return "".join(pieces)

    def list_models(self) -> list[str]:
        client = self._get_client()
        try:
            return sorted(m.id for m in client.models.list())
        except openai.OpenAIError as e:
            raise _translate_error(e, "-") from e
