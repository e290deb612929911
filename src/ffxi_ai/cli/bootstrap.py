# src/ffxi_ai/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures the local (gitignored) data directory exists,
- wires the dispatcher and Ollama clients into AppState,
- persists user preferences (model, Ollama URL) as JSON.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import asdict
from pathlib import Path

from ..config import get_settings
from ..core.ports import AsyncPromptClient
from ..core.state import AppState, Preferences
from ..dispatch.dispatcher import Dispatcher
from ..llm.ollama import OllamaClient
from ..llm.openai_compat import OpenAICompatClient

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.preferences_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    dispatcher = Dispatcher()

    def native_client(base_url: str) -> AsyncPromptClient:
        return OllamaClient(
            dispatcher,
            base_url,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
        )

    blocking_client = OpenAICompatClient(settings) if settings.backend == "openai" else None

    return AppState(
        settings=settings,
        dispatcher=dispatcher,
        prefs=load_preferences(settings),
        native_client=native_client,
        blocking_client=blocking_client,
    )


def load_preferences(settings) -> Preferences:
    """Read preferences.json; anything missing or malformed falls back to settings defaults."""
    prefs = Preferences(model=settings.default_model, ollama_url=settings.ollama_url)
    path = Path(settings.preferences_path)
    if not path.exists():
        return prefs
    try:
        data = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError):
        logger.exception("Failed to load preferences from %s", path)
        return prefs
    if not isinstance(data, dict):
        logger.warning("Ignoring preferences file %s: not a JSON object", path)
        return prefs

    model = data.get("model")
    if isinstance(model, str) and model.strip():
        prefs.model = model.strip()
    url = data.get("ollama_url")
    if isinstance(url, str) and url.strip():
        prefs.ollama_url = url.strip().rstrip("/")
    logger.info("Loaded preferences from %s (model=%s)", path, prefs.model)
    return prefs


def save_preferences(state: AppState) -> bool:
    path = Path(state.settings.preferences_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(asdict(state.prefs), ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, path)
        with contextlib.suppress(OSError):
            os.chmod(path, 0o600)
        logger.info("Saved preferences to %s", path)
        return True
    except OSError:
        logger.exception("Failed to save preferences to %s", path)
        return False
