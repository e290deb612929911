# src/ffxi_ai/dispatch/errors.py

from __future__ import annotations


class DispatchTimeout(TimeoutError):
    """
    A wrapper gave up because its wait timed out.

    - partial: bytes received before the timeout (receive)
    - sent: bytes of the requested range already sent (send)
    - position: absolute index of the first unsent byte (send)

    Transport errors raised by send/receive carry the same attributes, set on the
    original OSError.
    """

    def __init__(
        self,
        message: str = "timeout",
        *,
        partial: bytes = b"",
        sent: int = 0,
        position: int = 0,
    ) -> None:
        super().__init__(message)
        self.partial = partial
        self.sent = sent
        self.position = position
