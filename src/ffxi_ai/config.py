# src/ffxi_ai/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing requires a running Ollama at import time.
- User-changeable values (model, URL) live in preferences.json, not here; these are the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "FFXI_AI"

BACKENDS = ("native", "openai")

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None or v.strip() == "" else v.strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    dispatch_log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    preferences_path: Path

    # ---- Ollama ----
    ollama_url: str
    default_model: str
    backend: str
    openai_base_url: str
    openai_api_key: str

    # ---- Timing ----
    connect_timeout: float
    read_timeout: float
    poll_interval: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "ffxi-ai")
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        dispatch_log_level = _env(_k("DISPATCH_LOG_LEVEL"), "WARNING")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/ffxi-ai"))
        preferences_path = _env_path(_k("PREFERENCES_PATH"), data_dir / "preferences.json")

        ollama_url = _env(_k("OLLAMA_URL"), "http://localhost:11434").rstrip("/")
        default_model = _env(_k("DEFAULT_MODEL"), "llama3")

        backend = _env(_k("BACKEND"), "native").lower()
        if backend not in BACKENDS:
            backend = "native"

        openai_base_url = _env(_k("OPENAI_BASE_URL"), f"{ollama_url}/v1")
        # Ollama ignores the key, but the SDK insists on one.
        openai_api_key = _env(_k("OPENAI_API_KEY"), "ollama")

        connect_timeout = max(0.1, _env_float(_k("CONNECT_TIMEOUT_SECONDS"), 5.0))
        read_timeout = max(0.1, _env_float(_k("READ_TIMEOUT_SECONDS"), 120.0))
        poll_interval = max(0.0, _env_float(_k("POLL_INTERVAL_SECONDS"), 0.1))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            dispatch_log_level=dispatch_log_level,
            data_dir=data_dir,
            preferences_path=preferences_path,
            ollama_url=ollama_url,
            default_model=default_model,
            backend=backend,
            openai_base_url=openai_base_url,
            openai_api_key=openai_api_key,
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            poll_interval=poll_interval,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
