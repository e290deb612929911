# src/ffxi_ai/core/state.py

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..dispatch.dispatcher import Dispatcher
from .ports import AsyncPromptClient, PromptClient


@dataclass(slots=True)
class Preferences:
    """User choices that survive restarts (preferences.json)."""

    model: str
    ollama_url: str


@dataclass
class AppState:
    # Settings object (or a SimpleNamespace in tests) with the fields from config.Settings.
    settings: Any

    dispatcher: Dispatcher
    prefs: Preferences

    # base_url -> client bound to `dispatcher`; rebuilt per request so /url takes effect at once.
    native_client: Callable[[str], AsyncPromptClient]

    # Only set when settings.backend == "openai".
    blocking_client: PromptClient | None = None
