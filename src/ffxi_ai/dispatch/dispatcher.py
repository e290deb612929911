# src/ffxi_ai/dispatch/dispatcher.py

"""
Cooperative single-threaded dispatcher.

Tasks are coroutines created with `Dispatcher.create_task()`. They look like blocking
code but only ever suspend in two places:

- `await dispatcher.wait(sock, "r" | "w" | "rw", timeout)` (socket readiness)
- `await dispatcher.sleep(seconds)` (timer)

Each call to `step()` does, in order:
1. start new tasks and resume sleepers whose deadline passed,
2. snapshot read/write interest (and mark sockets abandoned by finished tasks for close),
3. poll for readiness, bounded by the nearest deadline,
4. tag resources ready / timed out,
5. resume the tasks waiting on tagged resources,
6. apply deferred shutdown, close and detach requests.

A failure raised by a task is routed to `error_handler` and never stops the loop.
"""

from __future__ import annotations

import heapq
import logging
import socket
import time
from collections.abc import Callable, Coroutine
from typing import Any

from .poller import Poller, SelectPoller
from .resources import (
    Outcome,
    Resource,
    ResourceKind,
    Shutdown,
    Task,
    TaskState,
    socket_name,
)

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException, "Task | None"], None]

_MODE_STATES = {
    frozenset("r"): TaskState.AWAITING_READ,
    frozenset("w"): TaskState.AWAITING_WRITE,
    frozenset("rw"): TaskState.AWAITING_READ_WRITE,
}

_SHUTDOWN_FLAGS = {
    Shutdown.RECEIVE: socket.SHUT_RD,
    Shutdown.SEND: socket.SHUT_WR,
    Shutdown.BOTH: socket.SHUT_RDWR,
}


class _Suspend:
    """The one object tasks yield to the dispatcher."""

    __slots__ = ()

    def __await__(self):
        value = yield self
        return value


_SUSPEND = _Suspend()


class Dispatcher:
    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        poller: Poller | None = None,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._poller: Poller = poller if poller is not None else SelectPoller()
        self._sleeper = sleeper

        self.error_handler: ErrorHandler = self.default_error_handler
        self.status = "idle"

        self._current: Task | None = None
        self._reset()

    def _reset(self) -> None:
        self._active: dict[int, Resource] = {}
        self._by_sock: dict[Any, Resource] = {}
        self._pending: list[Task] = []
        self._orphans: list[Task] = []
        self._timers: list[tuple[float, int, Resource]] = []
        self._next_deadline: float | None = None

        self._must_shutdown: dict[int, tuple[Resource, Shutdown]] = {}
        self._must_close: dict[int, Resource] = {}
        self._must_detach: dict[int, Resource] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def now(self) -> float:
        return self._clock()

    @property
    def current_task(self) -> Task | None:
        return self._current

    def tracked(self, sock: Any) -> bool:
        return sock in self._by_sock

    def interest(self, sock: Any) -> str:
        """"r", "w", "rw" or "" for the socket's current interest."""
        res = self._by_sock.get(sock)
        if res is None:
            return ""
        return ("r" if res.read else "") + ("w" if res.write else "")

    def idle(self) -> bool:
        return not self._active and not self._pending

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, sock: Any, server: bool = False) -> Resource:
        """
        Track a socket (switching it to non-blocking mode).

        Safe to call again: it only upgrades the server flag. When called from a task,
        that task becomes the socket's owner unless another task is suspended on it.
        """
        res = self._by_sock.get(sock)
        if res is None:
            sock.setblocking(False)
            res = Resource(kind=ResourceKind.SOCKET, sock=sock, name=socket_name(sock))
            self._active[res.rid] = res
            self._by_sock[sock] = res
            logger.debug("Registered %r server=%s", res, server)
        if server:
            res.server = True
        current = self._current
        if current is not None and not res.awaited():
            res.task = current
        return res

    def unregister(self, sock: Any) -> None:
        res = self._by_sock.get(sock)
        if res is not None:
            self._release(res)

    def _release(self, res: Resource) -> None:
        if self._active.get(res.rid) is not res:
            return
        del self._active[res.rid]
        if res.sock is not None:
            self._by_sock.pop(res.sock, None)
        self._must_shutdown.pop(res.rid, None)
        self._must_close.pop(res.rid, None)
        self._must_detach.pop(res.rid, None)
        res.clear_interest()

    def register_interest(
        self,
        res: Resource,
        task: Task,
        what: str,
        deadline: float | None = None,
    ) -> None:
        """Bind `task` as the single waiter on `res`. A previous waiter is displaced."""
        if self._current is None:
            raise RuntimeError("register_interest() called outside of a dispatcher task")

        state = _MODE_STATES.get(frozenset(what))
        if state is None:
            raise ValueError(f"invalid wait mode: {what!r} (expected 'r', 'w' or 'rw')")

        previous = res.task
        if previous is not None and previous is not task and res.awaited():
            logger.warning("%r replaces %r as the waiter on %r", task, previous, res)
            previous.waiting_on = None
            self._orphans.append(previous)

        res.task = task
        res.read = "r" in what
        res.write = "w" in what
        res.deadline = deadline
        res.outcome = None

        task.state = state
        task.waiting_on = res
        if deadline is not None:
            self._lower_deadline(deadline)

    def _lower_deadline(self, deadline: float) -> None:
        if self._next_deadline is None or deadline < self._next_deadline:
            self._next_deadline = deadline

    # ------------------------------------------------------------------
    # Tasks and suspension points
    # ------------------------------------------------------------------

    def create_task(
        self,
        body: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        name: str | None = None,
    ) -> Task:
        """Schedule `body(*args)`. It first runs on the next step, never synchronously."""
        coro = body(*args)
        if not isinstance(coro, Coroutine):
            raise TypeError(f"{body!r} did not return a coroutine")
        task = Task(coro=coro, name=name or getattr(body, "__qualname__", "task"))
        self._pending.append(task)
        logger.debug("Created %r", task)
        return task

    def _require_task(self, what: str) -> Task:
        task = self._current
        if task is None:
            raise RuntimeError(
                f"{what}() cannot be awaited outside of a task; wrap the call in create_task()"
            )
        return task

    async def wait(self, sock: Any, what: str = "r", timeout: float | None = None) -> Outcome:
        """
        Suspend the current task until `sock` is ready for `what` or `timeout` expires.

        Returns Outcome.READY or Outcome.TIMEOUT. Either way the socket no longer carries
        any interest afterwards.
        """
        task = self._require_task("wait")
        res = self.register(sock)
        deadline = None if timeout is None else self._clock() + timeout
        self.register_interest(res, task, what, deadline)
        return await _SUSPEND

    async def sleep(self, delay: float = 0.0) -> None:
        """Suspend the current task for at least `delay` seconds."""
        task = self._require_task("sleep")
        deadline = self._clock() + max(0.0, float(delay))

        res = Resource(kind=ResourceKind.TIMER, name="timer", task=task, deadline=deadline)
        self._active[res.rid] = res
        heapq.heappush(self._timers, (deadline, res.rid, res))
        self._lower_deadline(deadline)

        task.state = TaskState.AWAITING_TIMER
        task.waiting_on = res
        await _SUSPEND

    def _resume(self, task: Task, value: Any = None) -> None:
        if task.done():
            return
        task.state = TaskState.RUNNABLE
        task.waiting_on = None

        self._current = task
        try:
            yielded = task.coro.send(value)
        except StopIteration as exc:
            task.state = TaskState.FINISHED
            task.result = exc.value
            logger.debug("%r finished", task)
            return
        except Exception as exc:
            task.state = TaskState.FAILED
            task.error = exc
            self._report(exc, task)
            return
        finally:
            self._current = None

        if yielded is not _SUSPEND or not task.suspended:
            err = RuntimeError(
                f"task {task.name!r} yielded {yielded!r}; only dispatcher wait()/sleep() may suspend"
            )
            task.state = TaskState.FAILED
            task.error = err
            task.waiting_on = None
            try:
                task.coro.close()
            except Exception as close_err:
                self._report(close_err, task)
            self._report(err, task)

    # ------------------------------------------------------------------
    # Deferred disposition
    # ------------------------------------------------------------------

    def _marked(self, res: Resource) -> bool:
        return (
            res.rid in self._must_close
            or res.rid in self._must_shutdown
            or res.rid in self._must_detach
        )

    def _markable(self, sock: Any) -> Resource | None:
        res = self._by_sock.get(sock)
        if res is None or self._marked(res):
            return None
        return res

    def close(self, sock: Any) -> None:
        """Close `sock` on the next step once nobody is waiting on it."""
        res = self._markable(sock)
        if res is not None:
            self._must_close[res.rid] = res

    def shutdown(self, sock: Any, how: str = Shutdown.BOTH) -> None:
        """Half/full shutdown of `sock` ('receive', 'send' or 'both'), deferred like close()."""
        how = Shutdown(how)
        res = self._markable(sock)
        if res is not None:
            self._must_shutdown[res.rid] = (res, how)

    def detach(self, sock: Any) -> None:
        """Stop tracking `sock` without closing it, so something else can own it."""
        res = self._markable(sock)
        if res is not None:
            self._must_detach[res.rid] = res

    # ------------------------------------------------------------------
    # Error hook
    # ------------------------------------------------------------------

    @staticmethod
    def default_error_handler(error: BaseException, task: Task | None) -> None:
        where = repr(task) if task is not None else "dispatcher"
        logger.error(
            "Unhandled error in %s: %s",
            where,
            error,
            exc_info=(type(error), error, error.__traceback__),
        )

    def _report(self, error: BaseException, task: Task | None) -> None:
        try:
            self.error_handler(error, task)
        except Exception:
            logger.exception("Dispatcher error handler failed while reporting %r", error)

    # ------------------------------------------------------------------
    # Step / loop
    # ------------------------------------------------------------------

    def step(self, timeout: float | None = None) -> int:
        """
        Run one scheduler iteration.

        `timeout` is the most the poll may block (None: until the next event or deadline).
        Returns the number of sockets found ready.
        """
        if self._current is not None:
            raise RuntimeError("Dispatcher.step() cannot be called from inside a task")

        self._run_due(self._clock())
        readers, writers = self._snapshot()
        ready = self._poll(readers, writers, timeout)
        self._mark_outcomes(ready, self._clock())
        self._resume_marked()
        self._cleanup()
        return len(ready)

    def _run_due(self, now: float) -> None:
        pending, self._pending = self._pending, []
        for task in pending:
            self._resume(task)

        due: list[Resource] = []
        while self._timers and self._timers[0][0] <= now:
            _, _, res = heapq.heappop(self._timers)
            if self._active.get(res.rid) is res and res.awaited():
                due.append(res)

        for res in due:
            task = res.task
            self._release(res)
            if task is not None and task.waiting_on is res and task.suspended:
                self._resume(task)

    def _snapshot(self) -> tuple[list[Any], list[Any]]:
        readers: list[Any] = []
        writers: list[Any] = []
        for res in list(self._active.values()):
            if res.kind is not ResourceKind.SOCKET:
                continue

            if res.awaited():
                if res.read:
                    readers.append(res.sock)
                if res.write:
                    writers.append(res.sock)
                continue

            res.clear_interest()
            owner = res.task
            if owner is None or not owner.done():
                continue

            res.task = None
            if not res.server and not self._marked(res):
                # Client socket left behind by a task that has ended.
                logger.debug("%r abandoned by %r, closing", res, owner)
                self._must_close[res.rid] = res

        return readers, writers

    def _poll_timeout(self, budget: float | None, now: float) -> float | None:
        if self._pending:
            return 0.0
        timeout = budget
        if self._next_deadline is not None:
            until = max(0.0, self._next_deadline - now)
            timeout = until if timeout is None else min(timeout, until)
        return None if timeout is None else max(0.0, timeout)

    def _poll(self, readers: list[Any], writers: list[Any], budget: float | None) -> set[Resource]:
        now = self._clock()

        if not readers and not writers:
            # Nothing to select on: sleep until the next deadline instead of spinning.
            if self._pending:
                return set()
            if self._next_deadline is not None:
                delay = self._next_deadline - now
                if delay > 0:
                    self._sleeper(delay)
            elif budget:
                self._sleeper(budget)
            return set()

        try:
            readable, writable = self._poller.poll(readers, writers, self._poll_timeout(budget, now))
        except Exception as exc:
            self._report(exc, None)
            return set()

        ready: set[Resource] = set()
        for sock in (*readable, *writable):
            res = self._by_sock.get(sock)
            if res is not None:
                ready.add(res)
        return ready

    def _mark_outcomes(self, ready: set[Resource], now: float) -> None:
        for res in ready:
            if res.awaited():
                res.outcome = Outcome.READY

        nearest: float | None = None
        for res in self._active.values():
            if res.deadline is None or res.outcome is not None or not res.awaited():
                continue
            if now >= res.deadline:
                res.outcome = Outcome.TIMEOUT
            elif nearest is None or res.deadline < nearest:
                nearest = res.deadline
        self._next_deadline = nearest

    def _resume_marked(self) -> None:
        batch: list[tuple[Task, Resource, Outcome]] = []
        for res in list(self._active.values()):
            outcome = res.outcome
            if outcome is None:
                continue
            task = res.task
            if res.kind is ResourceKind.TIMER:
                self._release(res)
            else:
                res.clear_interest()
            if task is not None:
                batch.append((task, res, outcome))

        for task, res, outcome in batch:
            if task.waiting_on is not res or not task.suspended:
                continue
            self._resume(task, None if res.kind is ResourceKind.TIMER else outcome)

    def _cleanup(self) -> None:
        for rid, (res, how) in list(self._must_shutdown.items()):
            if res.awaited():
                continue
            del self._must_shutdown[rid]
            if self._active.get(rid) is not res:
                continue
            try:
                res.sock.shutdown(_SHUTDOWN_FLAGS[how])
                logger.debug("Shut down %r (%s)", res, how.value)
            except OSError as exc:
                self._report(exc, None)
            self._release(res)

        for rid, res in list(self._must_close.items()):
            if res.awaited():
                continue
            del self._must_close[rid]
            if self._active.get(rid) is not res:
                continue
            try:
                res.sock.close()
                logger.debug("Closed %r", res)
            except OSError as exc:
                self._report(exc, None)
            self._release(res)

        for rid, res in list(self._must_detach.items()):
            if res.awaited():
                continue
            del self._must_detach[rid]
            self._release(res)
            logger.debug("Detached %r", res)

    def run(self, timeout: float | None = None) -> None:
        """
        Step until no resource and no new task remains, or until stop() is called.

        On exit every remaining non-server socket is closed, leftover tasks are closed,
        and the dispatcher is reset so it can be run again.
        """
        if self._current is not None:
            raise RuntimeError("Dispatcher.run() cannot be called from inside a task")

        self.status = "started"
        try:
            while self.status == "started":
                if self.idle():
                    self.status = "done"
                else:
                    self.step(timeout)
        finally:
            self._teardown()

    def run_until_done(self, tasks: list[Task], timeout: float | None = None) -> None:
        """
        Step only until every task in `tasks` has finished or failed.

        Other tasks and sockets stay registered; nothing is torn down.
        """
        while not all(task.done() for task in tasks):
            self.step(timeout)

    def stop(self) -> None:
        if self.status == "started":
            self.status = "stopped"

    def teardown(self) -> None:
        """Fail leftover tasks, close tracked sockets and reset, without stepping."""
        if self._current is not None:
            raise RuntimeError("Dispatcher.teardown() cannot be called from inside a task")
        self._teardown()

    def _teardown(self) -> None:
        leftovers = list(self._pending)
        leftovers += [task for task in self._orphans if not task.done()]
        for res in self._active.values():
            task = res.task
            if task is not None and not task.done() and task not in leftovers:
                leftovers.append(task)
        for task in leftovers:
            task.state = TaskState.FAILED
            task.waiting_on = None
            try:
                task.coro.close()
            except Exception as exc:
                self._report(exc, task)

        for res in list(self._active.values()):
            if res.kind is not ResourceKind.SOCKET or res.rid in self._must_detach:
                continue
            if res.server and res.rid not in self._must_close:
                continue
            try:
                res.sock.close()
            except OSError as exc:
                self._report(exc, None)

        if leftovers:
            logger.debug("Dispatcher stopped with %d unfinished task(s)", len(leftovers))
        self._reset()
