# src/ffxi_ai/logging_setup.py

"""
Logging for the console app.

Every record is stamped with the dispatcher task that was running when it was emitted
(`%(task)s`, "-" outside tasks), so interleaved /ask requests can be told apart in
ffxi-ai.log. Call setup_logging() once at startup, then attach_dispatcher() once the
dispatcher exists.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .dispatch.dispatcher import Dispatcher

LOG_FILE_NAME = "ffxi-ai.log"

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s [%(task)s]: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Libraries that log request lines at INFO; the console only wants their failures.
_CHATTY_LIBS = ("httpx", "httpcore", "openai")


class ConsoleFilter(logging.Filter):
    """
    Console policy:
    - ffxi_ai.dispatch.* (per-step task/socket traces) only at `dispatch_level` and above
    - the rest of ffxi_ai as configured by the handler level
    - everything else (py.warnings, third-party) only ERROR+
    """

    def __init__(self, dispatch_level: int = logging.WARNING) -> None:
        super().__init__()
        self.dispatch_level = dispatch_level

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name == "ffxi_ai.dispatch" or name.startswith("ffxi_ai.dispatch."):
            return record.levelno >= self.dispatch_level
        if name.startswith("ffxi_ai."):
            return True
        return record.levelno >= logging.ERROR


class TaskContextFilter(logging.Filter):
    """Adds `record.task`: the current dispatcher task's name, or "-"."""

    def __init__(self) -> None:
        super().__init__()
        self.dispatcher: Dispatcher | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        task = self.dispatcher.current_task if self.dispatcher is not None else None
        record.task = task.name if task is not None else "-"
        return True


_task_context = TaskContextFilter()


def attach_dispatcher(dispatcher: Dispatcher | None) -> None:
    """Name records after `dispatcher`'s running task (None detaches)."""
    _task_context.dispatcher = dispatcher


def setup_logging(
    *,
    log_dir: str | Path = ".local/ffxi-ai",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    dispatch_level: int = logging.WARNING,
) -> Path:
    """
    Install a filtered stderr handler and a full file handler on the root logger.

    Replaces handlers from earlier calls. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_task_context)
    console.addFilter(ConsoleFilter(dispatch_level))
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    file_handler.addFilter(_task_context)
    root.addHandler(file_handler)

    for name in _CHATTY_LIBS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    return log_file
