# src/ffxi_ai/dispatch/sockets.py

"""
Dispatcher-friendly socket operations.

Each wrapper tries the raw non-blocking call first and only suspends the calling task
when the socket would block. Timeouts apply to each wait and raise DispatchTimeout.
Other socket errors propagate with their own type; send and receive first attach the
progress made so far (`sent`/`position`, `partial`) to the exception.
"""

from __future__ import annotations

import errno
import os
import socket
from typing import Any

from .dispatcher import Dispatcher
from .errors import DispatchTimeout
from .resources import Outcome

LINE = "*l"
ALL = "*a"

RECV_SIZE = 8192

_IN_PROGRESS = {errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EAGAIN, errno.EALREADY}


async def accept(
    dispatcher: Dispatcher,
    sock: socket.socket,
    *,
    timeout: float | None = None,
) -> socket.socket:
    """Accept one connection. The listening socket is tracked as a server socket."""
    dispatcher.register(sock, server=not dispatcher.tracked(sock))
    while True:
        try:
            client, _addr = sock.accept()
        except BlockingIOError:
            client = None

        if client is not None:
            client.setblocking(False)
            return client

        if await dispatcher.wait(sock, "r", timeout) is Outcome.TIMEOUT:
            raise DispatchTimeout("accept timed out")


async def connect(
    dispatcher: Dispatcher,
    sock: socket.socket,
    address: str,
    port: int,
    *,
    timeout: float | None = None,
) -> None:
    dispatcher.register(sock)
    err = sock.connect_ex((address, port))
    if err == 0:
        return
    if err not in _IN_PROGRESS:
        raise OSError(err, os.strerror(err))

    if await dispatcher.wait(sock, "w", timeout) is Outcome.TIMEOUT:
        raise DispatchTimeout(f"connect to {address}:{port} timed out")

    # Writable doesn't mean connected.
    err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
    if err != 0:
        raise OSError(err, os.strerror(err))


async def send(
    dispatcher: Dispatcher,
    sock: socket.socket,
    data: bytes,
    start: int = 0,
    end: int | None = None,
    *,
    timeout: float | None = None,
) -> int:
    """
    Send data[start:end] completely. Returns the number of bytes sent.

    Any error raised part way (DispatchTimeout or a transport OSError) carries `sent`, the
    bytes of the range already sent, and `position`, the absolute index into `data` of the
    first unsent byte, so `send(d, sock, data, err.position, end)` resumes the transfer.
    """
    dispatcher.register(sock)
    view = memoryview(data)[start:end]
    sent = 0
    while sent < len(view):
        try:
            sent += sock.send(view[sent:])
            continue
        except BlockingIOError:
            pass
        except OSError as e:
            _attach_progress(e, sent=sent, position=start + sent)
            raise
        if await dispatcher.wait(sock, "w", timeout) is Outcome.TIMEOUT:
            raise DispatchTimeout("send timed out", sent=sent, position=start + sent)
    return sent


def _attach_progress(err: OSError, **progress: Any) -> None:
    for name, value in progress.items():
        setattr(err, name, value)


def _drain(buf: bytearray, prefix: bytes) -> bytes:
    partial = prefix + bytes(buf)
    buf.clear()
    return partial


def _take(buf: bytearray, pattern: Any) -> bytes | None:
    """Cut one pattern's worth of data off the front of buf, or None if incomplete."""
    if pattern == LINE:
        idx = buf.find(b"\n")
        if idx < 0:
            return None
        line = bytes(buf[:idx])
        del buf[: idx + 1]
        return line[:-1] if line.endswith(b"\r") else line

    if pattern == ALL:
        return None

    if len(buf) >= pattern:
        chunk = bytes(buf[:pattern])
        del buf[:pattern]
        return chunk
    return None


async def receive(
    dispatcher: Dispatcher,
    sock: socket.socket,
    pattern: str | int = LINE,
    *,
    prefix: bytes = b"",
    timeout: float | None = None,
) -> bytes:
    """
    Read according to pattern:

    - LINE ("*l"): one line, without the trailing \\n or \\r\\n
    - ALL ("*a"): everything until the peer closes
    - n (int): exactly n bytes

    If the peer closes first, whatever was buffered is returned (b"" at a clean EOF).
    On timeout, or when the transport fails (ECONNRESET, ...), the buffered bytes are handed
    back as `partial` on the raised error and the buffer is emptied.
    """
    if isinstance(pattern, int):
        if pattern < 0:
            raise ValueError("byte count must be >= 0")
    elif pattern not in (LINE, ALL):
        raise ValueError(f"invalid receive pattern: {pattern!r}")

    buf = dispatcher.register(sock).buffer
    while True:
        data = _take(buf, pattern)
        if data is not None:
            return prefix + data

        try:
            chunk = sock.recv(RECV_SIZE)
        except BlockingIOError:
            chunk = None
        except OSError as e:
            _attach_progress(e, partial=_drain(buf, prefix))
            raise

        if chunk is None:
            if await dispatcher.wait(sock, "r", timeout) is Outcome.TIMEOUT:
                raise DispatchTimeout("receive timed out", partial=_drain(buf, prefix))
            continue

        if not chunk:
            return _drain(buf, prefix)
        buf += chunk
