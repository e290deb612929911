# src/ffxi_ai/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then either:
- runs a single command given on the command line (`ffxi-ai /ask hello`), or
- starts the console REPL.
"""

from __future__ import annotations

import logging
import sys

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import handle_line, run_console_loop
from ..logging_setup import attach_dispatcher, setup_logging

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown: close whatever the dispatcher still tracks."""
    try:
        if not state.dispatcher.idle():
            state.dispatcher.teardown()
    except Exception:
        logger.exception("Dispatcher shutdown failed.")


def _level(name: str, default: int) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    settings = get_settings()

    setup_logging(
        log_dir=settings.data_dir,
        console_level=_level(settings.log_level, logging.INFO),
        dispatch_level=_level(settings.dispatch_log_level, logging.WARNING),
    )

    logger.info("Starting %s (backend=%s)...", settings.app_name, settings.backend)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)
    attach_dispatcher(state.dispatcher)

    try:
        if argv:
            response = handle_line(state, " ".join(argv))
            if response:
                print(response)
        else:
            run_console_loop(state)
    finally:
        _shutdown(state)
        logger.info("Bye.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
