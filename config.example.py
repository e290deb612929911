# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
User choices made at runtime (/model, /url) are stored in preferences.json under the data dir
and take precedence over the defaults below.

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "FFXI_AI_APP_NAME": "App display name (default: ffxi-ai).",
    "FFXI_AI_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    "FFXI_AI_DISPATCH_LOG_LEVEL": "Console level for dispatcher internals (default: WARNING; DEBUG traces every step).",
    # Paths (gitignored)
    "FFXI_AI_DATA_DIR": "Local data directory for logs and preferences (default: .local/ffxi-ai).",
    "FFXI_AI_PREFERENCES_PATH": "Preferences JSON path (default: <data_dir>/preferences.json).",
    # Ollama
    "FFXI_AI_OLLAMA_URL": "Ollama server URL (default: http://localhost:11434).",
    "FFXI_AI_DEFAULT_MODEL": "Model used when /ask has no -m (default: llama3).",
    "FFXI_AI_BACKEND": "native (dispatcher + raw HTTP, default) or openai (OpenAI-compatible SDK).",
    "FFXI_AI_OPENAI_BASE_URL": "OpenAI-compatible base URL (default: <ollama_url>/v1).",
    "FFXI_AI_OPENAI_API_KEY": "API key for the openai backend (Ollama ignores it; default: ollama).",
    # Timing
    "FFXI_AI_CONNECT_TIMEOUT_SECONDS": "Connect timeout in seconds (default: 5).",
    "FFXI_AI_READ_TIMEOUT_SECONDS": "Per-read timeout in seconds (default: 120).",
    "FFXI_AI_POLL_INTERVAL_SECONDS": "Upper bound for one dispatcher poll (default: 0.1).",
}
