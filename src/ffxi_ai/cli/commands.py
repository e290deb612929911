# src/ffxi_ai/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Callable
from typing import cast
from urllib.parse import urlsplit

from ..core.state import AppState
from ..llm.errors import OllamaError, friendly_llm_error_message
from .bootstrap import save_preferences

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

AskResult = tuple[str, str | BaseException]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/ask, /help, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def parse_ask_args(args: list[str]) -> tuple[list[str], str]:
    """
    Split "/ask" arguments into (models, prompt).

    -m NAME / --model NAME may repeat; a trailing -m without a name is kept as prompt text.
    """
    models: list[str] = []
    words: list[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-m", "--model") and i + 1 < len(args):
            if args[i + 1] not in models:
                models.append(args[i + 1])
            i += 2
            continue
        words.append(arg)
        i += 1
    return models, " ".join(words)


def run_native_asks(state: AppState, prompt: str, models: list[str]) -> list[AskResult]:
    """
    Query every model concurrently, one dispatcher task each.

    Results come back in completion order.
    """
    try:
        client = state.native_client(state.prefs.ollama_url)
    except OllamaError as e:
        return [(model, e) for model in models]

    results: list[AskResult] = []

    async def ask_one(model: str) -> None:
        try:
            reply = await client.generate(prompt, model)
        except OllamaError as e:
            logger.info("Ollama error for model=%s: %s", model, e)
            results.append((model, e))
            return
        results.append((model, reply))

    d = state.dispatcher
    tasks = [d.create_task(ask_one, model, name=f"ask:{model}") for model in models]
    d.run_until_done(tasks, timeout=state.settings.poll_interval)

    # A task that crashed outside OllamaError was already reported by the error hook.
    answered = {model for model, _ in results}
    for model, task in zip(models, tasks):
        if model not in answered:
            results.append((model, task.error or RuntimeError("no reply")))
    return results


def run_blocking_asks(state: AppState, prompt: str, models: list[str]) -> list[AskResult]:
    client = state.blocking_client
    if client is None:
        raise RuntimeError("run_blocking_asks() needs the openai backend (state.blocking_client)")
    results: list[AskResult] = []
    for model in models:
        try:
            results.append((model, client.complete(prompt, model)))
        except OllamaError as e:
            logger.info("LLM error for model=%s: %s", model, e)
            results.append((model, e))
    return results


def _format_result(model: str, reply: str | BaseException, tagged: bool) -> str:
    tag = f"[AI:{model}]" if tagged else "[AI]"
    if isinstance(reply, BaseException):
        if isinstance(reply, Exception):
            return f"{tag} {friendly_llm_error_message(reply, model=model)}"
        return f"{tag} Error communicating with Ollama: {reply!r}"
    return f"{tag} {reply.strip()}"


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_ask(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /ask <prompt>                  -> ask the default model
    /ask -m MODEL [-m MODEL] <prompt> -> ask one or several models (concurrently)
    """
    models, prompt = parse_ask_args(args)
    if not prompt:
        return "Usage: /ask [-m|--model NAME]... <prompt>"
    models = models or [state.prefs.model]

    if emit:
        with contextlib.suppress(Exception):
            emit("Sending prompt to AI...")

    if state.blocking_client is not None:
        results = run_blocking_asks(state, prompt, models)
    else:
        results = run_native_asks(state, prompt, models)

    tagged = len(models) > 1
    return "\n".join(_format_result(model, reply, tagged) for model, reply in results)


def cmd_models(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    names: list[str] = []
    try:
        if state.blocking_client is not None:
            names = state.blocking_client.list_models()
        else:
            client = state.native_client(state.prefs.ollama_url)

            async def fetch() -> None:
                names.extend(await client.list_models())

            d = state.dispatcher
            task = d.create_task(fetch, name="models")
            d.run_until_done([task], timeout=state.settings.poll_interval)
            if task.error is not None:
                raise task.error
    except OllamaError as e:
        return friendly_llm_error_message(e)

    if not names:
        return "No models installed. Run 'ollama pull <model>' first."
    lines = ["Installed models:"]
    for name in names:
        marker = " (default)" if name == state.prefs.model else ""
        lines.append(f"  {name}{marker}")
    return "\n".join(lines)


def cmd_model(state: AppState, args: list[str]) -> str:
    """
    /model        -> show the default model
    /model NAME   -> set (and persist) the default model
    """
    if not args:
        return f"Current model: {state.prefs.model}"
    state.prefs.model = args[0]
    saved = save_preferences(state)
    return f"Default model set to {state.prefs.model}." + ("" if saved else " (not saved)")


def cmd_url(state: AppState, args: list[str]) -> str:
    """
    /url        -> show the Ollama URL
    /url URL    -> set (and persist) the Ollama URL
    """
    if not args:
        return f"Ollama URL: {state.prefs.ollama_url}"
    url = args[0].rstrip("/")
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return "Usage: /url http://host:port"
    state.prefs.ollama_url = url
    saved = save_preferences(state)
    return f"Ollama URL set to {url}." + ("" if saved else " (not saved)")


def cmd_status(state: AppState, args: list[str]) -> str:
    backend = "openai-compatible" if state.blocking_client is not None else "native"
    return (
        "Status:\n"
        f"  Backend: {backend}\n"
        f"  Ollama URL: {state.prefs.ollama_url}\n"
        f"  Model: {state.prefs.model}\n"
        f"  Preferences: {state.settings.preferences_path}"
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register(
    "ask", cmd_ask, help_text="Ask the AI: /ask [-m MODEL]... <prompt>.", aliases=["a"]
)
registry.register("models", cmd_models, help_text="List models installed in Ollama.")
registry.register("model", cmd_model, help_text="Show or set the default model: /model [NAME].")
registry.register("url", cmd_url, help_text="Show or set the Ollama URL: /url [URL].")
registry.register("status", cmd_status, help_text="Show backend, URL and model.")
