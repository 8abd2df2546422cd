"""Polling and bounded retry helpers for asynchronous control-plane operations."""
from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from ..errors import PollTimeoutError, RemoteCallError
from .context import BuildContext

T = TypeVar("T")

logger = logging.getLogger("imagebaker.polling")


def wait_until(
    ctx: BuildContext,
    probe: Callable[[], T | None],
    *,
    interval: float,
    timeout: float,
    description: str,
) -> T:
    """Call ``probe`` until it returns a truthy value.

    Retryable remote-call failures are logged at debug level and retried until
    the budget is spent. Non-retryable errors raised by ``probe`` propagate
    unchanged, which is how a probe reports a terminal failure state.
    """
    deadline = time.monotonic() + timeout
    attempt = 0
    while True:
        ctx.check()
        attempt += 1
        try:
            result = probe()
        except RemoteCallError as exc:
            if not exc.retryable:
                raise
            logger.debug("Transient error while waiting for %s (attempt %d): %s", description, attempt, exc)
            result = None
        if result:
            return result

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise PollTimeoutError(description, timeout)
        if ctx.wait(min(interval, remaining)):
            ctx.check()


def retry_call(
    ctx: BuildContext,
    func: Callable[[], T],
    *,
    attempts: int,
    interval: float,
    description: str,
) -> T:
    """Retry ``func`` on retryable remote-call errors, up to ``attempts`` tries."""
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RemoteCallError as exc:
            if not exc.retryable or attempt == attempts:
                raise
            logger.debug("Retrying %s after transient error (attempt %d/%d): %s", description, attempt, attempts, exc)
        if ctx.wait(interval):
            ctx.check()
    raise AssertionError("unreachable")  # pragma: no cover
