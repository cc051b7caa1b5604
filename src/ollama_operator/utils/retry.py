"""Bounded exponential-backoff retries."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed number of attempts with a delay of ``base_delay * 2**attempt``."""

    attempts: int = 3
    base_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Get the backoff delay after the given zero-based attempt."""
        return self.base_delay * (2**attempt)


DEFAULT_RETRY_POLICY = RetryPolicy()


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    *,
    give_up_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], None] | None = None,
    cancel: threading.Event | None = None,
    description: str = "operation",
) -> T:
    """Call ``func`` until it succeeds or the attempt budget is spent.

    Args:
        func: Zero-argument callable to invoke.
        policy: Attempt count and backoff base.
        give_up_on: Exception types that are re-raised immediately.
        sleep: Sleep function used between attempts. Defaults to waiting on
            ``cancel`` when given, otherwise ``time.sleep``.
        cancel: Once set, no further attempts are made and the last error
            is re-raised.
        description: Label used in log messages.

    Returns:
        Whatever ``func`` returns on the first successful attempt.

    Raises:
        The exception from the final attempt.
    """
    last_error: Exception | None = None
    for attempt in range(policy.attempts):
        try:
            return func()
        except give_up_on:
            raise
        except Exception as e:
            last_error = e
            if attempt == policy.attempts - 1:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{policy.attempts}), "
                f"retrying in {delay:.0f}s: {e}"
            )
            if _wait(delay, sleep, cancel):
                logger.info(f"{description} cancelled while backing off")
                break

    assert last_error is not None
    raise last_error


def _wait(
    delay: float,
    sleep: Callable[[float], None] | None,
    cancel: threading.Event | None,
) -> bool:
    """Wait out a backoff delay. Returns True if cancellation was requested."""
    if sleep is None:
        if cancel is not None:
            return cancel.wait(delay)
        time.sleep(delay)
        return False
    if cancel is not None and cancel.is_set():
        return True
    sleep(delay)
    return cancel is not None and cancel.is_set()
