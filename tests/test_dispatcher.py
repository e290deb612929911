# tests/test_dispatcher.py

from __future__ import annotations

import socket
import time

import pytest

from ffxi_ai.dispatch import sockets
from ffxi_ai.dispatch.dispatcher import Dispatcher
from ffxi_ai.dispatch.resources import Outcome, TaskState

from .fakes import FakeClock


def test_create_task_runs_on_next_step_not_synchronously(dispatcher) -> None:
    ran: list[str] = []

    async def body(tag: str) -> str:
        ran.append(tag)
        return tag

    task = dispatcher.create_task(body, "x")
    assert ran == []
    assert task.state is TaskState.RUNNABLE

    dispatcher.step(0)
    assert ran == ["x"]
    assert task.state is TaskState.FINISHED
    assert task.result == "x"


def test_create_task_rejects_non_coroutine(dispatcher) -> None:
    with pytest.raises(TypeError):
        dispatcher.create_task(lambda: 42)


def test_sleep_is_not_resumed_before_deadline() -> None:
    clock = FakeClock()
    d = Dispatcher(clock=clock, sleeper=clock.sleep)
    woke_at: list[float] = []

    async def sleeper() -> None:
        await d.sleep(5.0)
        woke_at.append(clock())

    d.create_task(sleeper)
    d.run()

    assert woke_at == [105.0]
    assert clock.sleeps == [5.0]
    assert d.status == "done"


def test_pending_tasks_make_the_poll_non_blocking() -> None:
    clock = FakeClock()
    d = Dispatcher(clock=clock, sleeper=clock.sleep)
    order: list[str] = []

    async def child() -> None:
        order.append("child")

    async def parent() -> None:
        d.create_task(child)
        await d.sleep(1.0)
        order.append("parent")

    d.create_task(parent)
    d.step()
    # child was pending, so the step didn't sleep for the parent's timer.
    assert clock.sleeps == []
    d.run()
    assert order == ["child", "parent"]


def test_two_independent_sockets_progress(dispatcher) -> None:
    p1 = socket.socketpair()
    p2 = socket.socketpair()
    got: dict[str, bytes] = {}

    async def reader(tag: str, sock: socket.socket) -> None:
        got[tag] = await sockets.receive(dispatcher, sock, timeout=2.0)

    try:
        t1 = dispatcher.create_task(reader, "one", p1[0])
        t2 = dispatcher.create_task(reader, "two", p2[0])
        dispatcher.step(0)
        assert t1.state is TaskState.AWAITING_READ
        assert t2.state is TaskState.AWAITING_READ

        p1[1].sendall(b"first\n")
        dispatcher.step(0.5)
        assert t1.state is TaskState.FINISHED
        assert t2.state is TaskState.AWAITING_READ
        assert got == {"one": b"first"}

        p2[1].sendall(b"second\n")
        dispatcher.run(timeout=0.5)
    finally:
        for s in (*p1, *p2):
            s.close()

    assert got == {"one": b"first", "two": b"second"}
    assert t2.state is TaskState.FINISHED


def test_error_hook_called_once_and_loop_keeps_going(dispatcher) -> None:
    seen: list[tuple[BaseException, object]] = []
    dispatcher.error_handler = lambda err, task: seen.append((err, task))

    async def boom() -> None:
        await dispatcher.sleep(0)
        raise ValueError("boom")

    async def fine() -> str:
        await dispatcher.sleep(0.01)
        return "done"

    bad = dispatcher.create_task(boom)
    good = dispatcher.create_task(fine)
    dispatcher.run()

    assert len(seen) == 1
    assert isinstance(seen[0][0], ValueError)
    assert seen[0][1] is bad
    assert bad.state is TaskState.FAILED
    assert good.result == "done"


def test_failing_error_handler_does_not_break_the_loop(dispatcher) -> None:
    def broken(err, task) -> None:
        raise RuntimeError("handler broke")

    dispatcher.error_handler = broken

    async def boom() -> None:
        raise ValueError("boom")

    task = dispatcher.create_task(boom)
    dispatcher.run()
    assert task.state is TaskState.FAILED


def test_wait_outside_a_task_raises(dispatcher, pair) -> None:
    coro = dispatcher.wait(pair[0], "r")
    with pytest.raises(RuntimeError):
        coro.send(None)
    coro.close()

    coro = dispatcher.sleep(1)
    with pytest.raises(RuntimeError):
        coro.send(None)
    coro.close()


def test_register_interest_outside_a_task_raises(dispatcher, pair) -> None:
    res = dispatcher.register(pair[0])
    with pytest.raises(RuntimeError):
        dispatcher.register_interest(res, object(), "r")  # type: ignore[arg-type]


def test_bad_wait_mode_is_reported(dispatcher, pair) -> None:
    seen: list[BaseException] = []
    dispatcher.error_handler = lambda err, task: seen.append(err)

    async def body() -> None:
        await dispatcher.wait(pair[0], "x")

    dispatcher.create_task(body)
    dispatcher.run()
    assert isinstance(seen[0], ValueError)


def test_step_from_inside_a_task_fails_that_task(dispatcher) -> None:
    seen: list[BaseException] = []
    dispatcher.error_handler = lambda err, task: seen.append(err)

    async def body() -> None:
        dispatcher.step(0)

    task = dispatcher.create_task(body)
    dispatcher.run()
    assert task.state is TaskState.FAILED
    assert isinstance(seen[0], RuntimeError)


def test_foreign_awaitable_fails_the_task(dispatcher) -> None:
    seen: list[BaseException] = []
    dispatcher.error_handler = lambda err, task: seen.append(err)

    class Foreign:
        def __await__(self):
            yield "not the dispatcher"

    async def body() -> None:
        await Foreign()

    task = dispatcher.create_task(body)
    dispatcher.run()
    assert task.state is TaskState.FAILED
    assert "only dispatcher" in str(seen[0])


def test_double_close_shutdown_detach_are_noops(dispatcher, pair) -> None:
    a, _ = pair
    dispatcher.register(a)
    dispatcher.close(a)
    dispatcher.close(a)
    dispatcher.shutdown(a)
    dispatcher.detach(a)
    dispatcher.step(0)

    assert not dispatcher.tracked(a)
    assert a.fileno() == -1

    # Untracked now: every call is ignored.
    dispatcher.close(a)
    dispatcher.shutdown(a, "send")
    dispatcher.detach(a)
    dispatcher.step(0)


def test_shutdown_send_side(dispatcher, pair) -> None:
    a, b = pair
    dispatcher.register(a)
    dispatcher.shutdown(a, "send")
    dispatcher.step(0)

    assert not dispatcher.tracked(a)
    assert a.fileno() != -1
    assert b.recv(16) == b""


def test_detach_keeps_socket_open(dispatcher, pair) -> None:
    a, b = pair
    dispatcher.register(a)
    dispatcher.detach(a)
    dispatcher.step(0)

    assert not dispatcher.tracked(a)
    a.setblocking(True)
    a.sendall(b"still open")
    assert b.recv(16) == b"still open"


def test_second_waiter_replaces_the_first(dispatcher, pair) -> None:
    a, b = pair
    outcomes: list[tuple[str, Outcome]] = []

    async def waiter(tag: str) -> None:
        outcomes.append((tag, await dispatcher.wait(a, "r")))

    first = dispatcher.create_task(waiter, "first")
    second = dispatcher.create_task(waiter, "second")
    dispatcher.step(0)
    assert dispatcher.interest(a) == "r"

    b.sendall(b"x")
    dispatcher.run_until_done([second], timeout=0.5)

    assert outcomes == [("second", Outcome.READY)]
    assert first.state is TaskState.AWAITING_READ
    assert first.waiting_on is None

    dispatcher.teardown()
    assert first.state is TaskState.FAILED


def test_server_socket_survives_owner_but_client_is_closed(dispatcher, listener, pair) -> None:
    a, _ = pair

    async def owner() -> None:
        dispatcher.register(listener, server=True)
        dispatcher.register(a)

    dispatcher.create_task(owner)
    dispatcher.step(0)
    dispatcher.step(0)

    assert a.fileno() == -1
    assert not dispatcher.tracked(a)
    assert dispatcher.tracked(listener)
    assert listener.fileno() != -1


def test_wait_times_out_and_socket_is_released_after_run(dispatcher, pair) -> None:
    a, _ = pair
    result: list[tuple[Outcome, float]] = []
    after: list[tuple[str, bool]] = []

    async def body() -> None:
        started = time.monotonic()
        outcome = await dispatcher.wait(a, "r", timeout=0.1)
        result.append((outcome, time.monotonic() - started))
        after.append((dispatcher.interest(a), dispatcher.tracked(a)))

    dispatcher.create_task(body)
    dispatcher.run()

    outcome, elapsed = result[0]
    assert outcome is Outcome.TIMEOUT
    assert elapsed >= 0.09
    # Straight after the timeout: no interest left, still registered to its owner.
    assert after == [("", True)]
    assert not dispatcher.tracked(a)
    assert dispatcher.interest(a) == ""


def test_close_is_deferred_while_socket_is_awaited(dispatcher, pair) -> None:
    a, b = pair
    outcomes: list[Outcome] = []

    async def body() -> None:
        outcomes.append(await dispatcher.wait(a, "r", timeout=2.0))

    task = dispatcher.create_task(body)
    dispatcher.step(0)
    dispatcher.close(a)
    dispatcher.step(0)

    assert dispatcher.tracked(a)
    assert a.fileno() != -1

    b.sendall(b"x")
    dispatcher.run_until_done([task], timeout=0.5)

    assert outcomes == [Outcome.READY]
    assert a.fileno() == -1
    assert not dispatcher.tracked(a)


def test_outcome_cleared_after_delivery(dispatcher, pair) -> None:
    a, b = pair
    b.sendall(b"x")
    interests: list[str] = []

    async def body() -> None:
        await dispatcher.wait(a, "rw", timeout=1.0)
        interests.append(dispatcher.interest(a))

    dispatcher.create_task(body)
    dispatcher.run()
    assert interests == [""]


def test_run_teardown_closes_coroutines_on_stop(dispatcher, pair) -> None:
    a, _ = pair
    cleaned: list[str] = []

    async def stuck() -> None:
        try:
            await dispatcher.wait(a, "r")
        finally:
            cleaned.append("closed")

    async def stopper() -> None:
        await dispatcher.sleep(0.01)
        dispatcher.stop()

    task = dispatcher.create_task(stuck)
    dispatcher.create_task(stopper)
    dispatcher.run()

    assert dispatcher.status == "stopped"
    assert cleaned == ["closed"]
    assert task.state is TaskState.FAILED
    assert a.fileno() == -1
    assert dispatcher.idle()
