"""Pending response bookkeeping for in-flight requests."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from rmqclient.codec import RemotingCommand


class RequestTimeoutError(TimeoutError):
    """Raised when no response arrives before the request deadline."""

    def __init__(self, message: str = "request timeout") -> None:
        super().__init__(message)


class ResponseFuture:
    """Holds the eventual response to a request identified by its opaque id.

    ``timeout`` is measured from construction; ``None`` waits forever.
    """

    def __init__(
        self,
        opaque: int,
        callback: Optional[Callable[["ResponseFuture"], None]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.opaque = opaque
        self.callback = callback
        self.response_command: Optional[RemotingCommand] = None
        self.error: Optional[BaseException] = None
        self._done = threading.Event()
        self._callback_lock = threading.Lock()
        self._callback_ran = False
        self._deadline = None if timeout is None else time.monotonic() + timeout

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def set_response(
        self,
        command: Optional[RemotingCommand] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Record the outcome and wake any waiter."""
        self.response_command = command
        self.error = error
        self._done.set()

    def execute_invoke_callback(self) -> None:
        """Run the callback at most once, however often this is called."""
        with self._callback_lock:
            if self._callback_ran:
                return
            self._callback_ran = True
            if self.callback is not None:
                self.callback(self)

    def wait_response(self) -> Optional[RemotingCommand]:
        """Block until the response arrives or the deadline passes.

        Returns the response command, or raises the recorded error; raises
        RequestTimeoutError (and records it) when the deadline passes first.
        """
        remaining = None
        if self._deadline is not None:
            remaining = max(0.0, self._deadline - time.monotonic())
        if self._done.wait(remaining):
            if self.error is not None:
                raise self.error
            return self.response_command
        error = RequestTimeoutError()
        self.error = error
        raise error