# tests/test_openai_compat.py

from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from ffxi_ai.llm.errors import OllamaConnectionError, OllamaError, OllamaTimeoutError
from ffxi_ai.llm.openai_compat import OpenAICompatClient


def _chunk(text: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class FakeSDK:
    """Just enough of openai.OpenAI for OpenAICompatClient."""

    def __init__(self, chunks=None, error: Exception | None = None) -> None:
        self.requests: list[dict] = []
        self._chunks = chunks or []
        self._error = error
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.models = SimpleNamespace(list=lambda: [SimpleNamespace(id="mistral"), SimpleNamespace(id="llama3")])

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self._error is not None:
            raise self._error
        return iter(self._chunks)


def test_complete_joins_stream_chunks(settings) -> None:
    sdk = FakeSDK(chunks=[_chunk("Hel"), _chunk(None), _chunk("lo")])
    client = OpenAICompatClient(settings, client=sdk)  # type: ignore[arg-type]

    assert client.complete("hi", "llama3") == "Hello"
    assert sdk.requests[0]["model"] == "llama3"
    assert sdk.requests[0]["messages"] == [{"role": "user", "content": "hi"}]


def test_empty_stream_is_an_error(settings) -> None:
    client = OpenAICompatClient(settings, client=FakeSDK(chunks=[]))  # type: ignore[arg-type]
    with pytest.raises(OllamaError):
        client.complete("hi", "llama3")


def test_sdk_errors_are_translated(settings) -> None:
    request = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")

    client = OpenAICompatClient(
        settings, client=FakeSDK(error=openai.APITimeoutError(request=request))  # type: ignore[arg-type]
    )
    with pytest.raises(OllamaTimeoutError):
        client.complete("hi", "llama3")

    client = OpenAICompatClient(
        settings, client=FakeSDK(error=openai.APIConnectionError(request=request))  # type: ignore[arg-type]
    )
    with pytest.raises(OllamaConnectionError):
        client.complete("hi", "llama3")


def test_list_models_sorted(settings) -> None:
    client = OpenAICompatClient(settings, client=FakeSDK())  # type: ignore[arg-type]
    assert client.list_models() == ["llama3", "mistral"]
