# tests/conftest.py

from __future__ import annotations

import socket
from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from ffxi_ai.core.state import AppState, Preferences
from ffxi_ai.dispatch.dispatcher import Dispatcher

from .fakes import FakePromptClient


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the command layer.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="ffxi-ai-test",
        data_dir=tmp_path,
        preferences_path=tmp_path / "preferences.json",
        ollama_url="http://localhost:11434",
        default_model="llama3",
        backend="native",
        connect_timeout=1.0,
        read_timeout=2.0,
        poll_interval=0.05,
    )


@pytest.fixture()
def dispatcher() -> Iterator[Dispatcher]:
    d = Dispatcher()
    yield d
    if not d.idle():
        d.teardown()


@pytest.fixture()
def fake_client(dispatcher: Dispatcher) -> FakePromptClient:
    return FakePromptClient(dispatcher)


@pytest.fixture()
def state(settings: SimpleNamespace, dispatcher: Dispatcher, fake_client: FakePromptClient) -> AppState:
    """AppState wired with a real dispatcher and a fake Ollama client."""
    return AppState(
        settings=settings,
        dispatcher=dispatcher,
        prefs=Preferences(model=settings.default_model, ollama_url=settings.ollama_url),
        native_client=lambda _url: fake_client,
    )


@pytest.fixture()
def listener(dispatcher: Dispatcher):
    """Listening TCP socket on an ephemeral localhost port."""
    sock = socket.create_server(("127.0.0.1", 0))
    yield sock
    dispatcher.unregister(sock)
    sock.close()


@pytest.fixture()
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()
