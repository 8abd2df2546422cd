"""Execution context threaded through every step, remote call and poll loop."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from ..errors import BuildCancelledError


@dataclass
class BuildContext:
    """Cooperative cancellation signal with an optional overall deadline."""

    timeout: float | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("imagebaker.pipeline"))
    _event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _deadline: float | None = field(default=None, init=False, repr=False)
    _reason: str | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.timeout is not None:
            self._deadline = time.monotonic() + self.timeout

    def cancel(self, reason: str = "Build cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self.logger.warning("%s", reason)
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = self._reason or f"Build deadline of {self.timeout:g}s exceeded"
            self._event.set()
            return True
        return False

    @property
    def reason(self) -> str | None:
        return self._reason

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True early if the build was cancelled."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(max(0.0, seconds))
        return self.cancelled

    def check(self) -> None:
        if self.cancelled:
            raise BuildCancelledError(self._reason or "Build cancelled")
