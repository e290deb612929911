# src/ffxi_ai/dispatch/resources.py

from __future__ import annotations

import itertools
from collections.abc import Coroutine
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskState(StrEnum):
    """
    Task lifecycle.

    A task is "suspended" while in one of the AWAITING_* states; only the dispatcher
    moves it out of them.
    """

    RUNNABLE = "runnable"
    AWAITING_READ = "awaiting_read"
    AWAITING_WRITE = "awaiting_write"
    AWAITING_READ_WRITE = "awaiting_read_write"
    AWAITING_TIMER = "awaiting_timer"
    FINISHED = "finished"
    FAILED = "failed"


SUSPENDED_STATES = frozenset(
    {
        TaskState.AWAITING_READ,
        TaskState.AWAITING_WRITE,
        TaskState.AWAITING_READ_WRITE,
        TaskState.AWAITING_TIMER,
    }
)


class ResourceKind(StrEnum):
    SOCKET = "socket"
    TIMER = "timer"


class Outcome(StrEnum):
    """Result of a suspension on a resource. Exactly one is delivered per wait."""

    READY = "ready"
    TIMEOUT = "timeout"


class Shutdown(StrEnum):
    RECEIVE = "receive"
    SEND = "send"
    BOTH = "both"


_task_ids = itertools.count(1)
_resource_ids = itertools.count(1)


@dataclass(slots=True, eq=False)
class Task:
    coro: Coroutine[Any, Any, Any]
    name: str
    id: int = field(default_factory=lambda: next(_task_ids))
    state: TaskState = TaskState.RUNNABLE
    waiting_on: Resource | None = None
    result: Any = None
    error: BaseException | None = None

    @property
    def suspended(self) -> bool:
        return self.state in SUSPENDED_STATES

    def done(self) -> bool:
        return self.state in (TaskState.FINISHED, TaskState.FAILED)

    def __repr__(self) -> str:
        return f"<Task {self.id} {self.name!r} {self.state.value}>"


@dataclass(slots=True, eq=False)
class Resource:
    """
    A watched handle: a socket or a synthetic timer.

    `rid` is never reused, so a stale record can't be confused with a new socket that
    happens to get the same descriptor.
    """

    kind: ResourceKind
    sock: Any = None
    name: str = "?"
    server: bool = False
    rid: int = field(default_factory=lambda: next(_resource_ids))

    task: Task | None = None
    read: bool = False
    write: bool = False
    deadline: float | None = None
    outcome: Outcome | None = None

    # Bytes received past the end of the last pattern handed out by receive().
    buffer: bytearray = field(default_factory=bytearray)

    def awaited(self) -> bool:
        """True while the owning task is suspended on this very resource."""
        task = self.task
        return task is not None and task.suspended and task.waiting_on is self

    def clear_interest(self) -> None:
        self.read = False
        self.write = False
        self.deadline = None
        self.outcome = None

    def __repr__(self) -> str:
        return f"<Resource {self.rid} {self.kind.value} {self.name}>"


def socket_name(sock: Any) -> str:
    """Friendly name: peer address if connected, else local address."""
    try:
        peer = sock.getpeername()
    except (OSError, AttributeError):
        peer = None
    if peer:
        return _fmt_addr(peer)
    try:
        local = sock.getsockname()
    except (OSError, AttributeError):
        local = None
    return f"{_fmt_addr(local) if local else '?'}:?:?"


def _fmt_addr(addr: Any) -> str:
    if isinstance(addr, tuple) and len(addr) >= 2:
        return f"{addr[0]}:{addr[1]}"
    return str(addr) or "?"
