"""
Retry and cancellation primitives for network calls.

Retries are an explicit loop with an attempt counter and a computed delay.
The sleep function is injectable so the backoff schedule can be tested
without waiting; when a CancelToken is given, the default sleep wakes up as
soon as the operation is cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from mssqlprovider.domain.config import RetrySettings
from mssqlprovider.domain.errors import OperationCancelledError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """
    Cooperative cancellation signal for one operation.

    Callbacks registered with ``on_cancel`` run once, on the cancelling
    thread; sessions use this to abort the statement in flight.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Cancel the operation and fire the registered callbacks."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback; returns a function that unregisters it.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if cancelled meanwhile."""
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("operation was cancelled")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            attempts=settings.attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
        )

    def delay_for(self, failed_attempt: int) -> float:
        """Delay after the ``failed_attempt``-th failure (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (failed_attempt - 1)))


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str = "operation",
    sleep: Optional[Callable[[float], None]] = None,
    cancel: Optional[CancelToken] = None,
    log: Optional[logging.Logger | logging.LoggerAdapter] = None,
) -> T:
    """
    Call ``func`` until it succeeds or the attempts are exhausted.

    Only TransientError is retried; anything else propagates immediately.

    Raises:
        TransientError: The last failure once every attempt failed
        OperationCancelledError: If ``cancel`` fires between attempts
    """
    log = log or logger
    for attempt in range(1, policy.attempts + 1):
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            return func()
        except TransientError as e:
            if attempt >= policy.attempts:
                log.error("%s failed after %d attempts: %s", description, attempt, e)
                raise
            delay = policy.delay_for(attempt)
            log.warning(
                "%s attempt %d/%d failed (%s); retrying in %.1fs",
                description, attempt, policy.attempts, e, delay,
            )
            _pause(delay, sleep, cancel)
    raise AssertionError("unreachable")  # pragma: no cover


def _pause(delay: float, sleep: Optional[Callable[[float], None]], cancel: Optional[CancelToken]) -> None:
    if sleep is not None:
        sleep(delay)
    elif cancel is not None:
        if cancel.wait(delay):
            raise OperationCancelledError("operation was cancelled during backoff")
        return
    else:
        time.sleep(delay)
    if cancel is not None:
        cancel.raise_if_cancelled()
