# src/ffxi_ai/llm/errors.py

from __future__ import annotations


class OllamaError(RuntimeError):
    """Error from Ollama operations."""

    def __init__(self, message: str, *, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class OllamaConnectionError(OllamaError):
    """Cannot connect to Ollama server."""

    def __init__(self, message: str):
        super().__init__(message, recoverable=True)


class OllamaTimeoutError(OllamaError):
    """Ollama request timed out."""

    def __init__(self, message: str):
        super().__init__(message, recoverable=True)


class OllamaModelError(OllamaError):
    """Model-related error (not found, not loaded)."""

    def __init__(self, message: str):
        super().__init__(message, recoverable=False)


def friendly_llm_error_message(err: Exception, *, model: str | None = None) -> str:
    msg = str(err).strip() or err.__class__.__name__
    line = f"Error communicating with Ollama: {msg}"
    if isinstance(err, OllamaConnectionError):
        return line + " (is 'ollama serve' running?)"
    if isinstance(err, OllamaModelError) and model:
        return line + f" (try 'ollama pull {model}')"
    return line
