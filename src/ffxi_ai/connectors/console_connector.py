# src/ffxi_ai/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


def _emit(text: str) -> None:
    # Immediate feedback before a long request ("Sending prompt to AI...").
    print(f"[{_ts_local()}] {text}", flush=True)


def as_command(line: str) -> str:
    """Plain text is shorthand for /ask."""
    return line if line.startswith("/") else f"/ask {line}"


def handle_line(state: AppState, line: str) -> str | None:
    """Run one input line through the command registry; never raises for handler bugs."""
    try:
        return command_registry.handle(state, as_command(line), emit=_emit)
    except Exception:
        logger.exception("Command handler crashed.")
        return "Internal error while handling a command."


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (model=%s).", state.prefs.model)
    _print_ts("[CONSOLE] Type a question or a /command. Use /help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = input(">>> You: ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> You: {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            response = handle_line(state, user_input)
        except KeyboardInterrupt:
            logger.info("Request interrupted by user.")
            _print_ts("[CONSOLE] Interrupted.")
            continue

        if response:
            print(f"[{_ts_local()}] {response}\n")

    logger.info("Console connector finished.")
