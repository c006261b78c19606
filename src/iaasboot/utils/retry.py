# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/utils/retry.py
from __future__ import annotations

import functools
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol


class RetryError(RuntimeError):
    pass


class Clock(Protocol):
    def monotonic(self) -> float: ...
    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


SYSTEM_CLOCK = SystemClock()


@dataclass(frozen=True)
class PollResult:
    ok: bool
    attempts: int
    elapsed: float


def poll_until(
    predicate: Callable[[], bool],
    *,
    timeout: float,
    interval: float,
    clock: Optional[Clock] = None,
    max_attempts: Optional[int] = None,
    on_wait: Callable[[int, float], None] | None = None,
) -> PollResult:
    """
    Evaluate predicate until it returns True, the timeout elapses or
    max_attempts is reached. Never blocks past the timeout: the last sleep is
    clipped to the remaining budget.

    on_wait: callback(attempt, elapsed) invoked before each sleep
    """
    clock = clock or SYSTEM_CLOCK
    start = clock.monotonic()
    attempt = 0

    while True:
        attempt += 1
        if predicate():
            return PollResult(ok=True, attempts=attempt, elapsed=clock.monotonic() - start)

        elapsed = clock.monotonic() - start
        if elapsed >= timeout or (max_attempts is not None and attempt >= max_attempts):
            return PollResult(ok=False, attempts=attempt, elapsed=elapsed)

        if on_wait:
            on_wait(attempt, elapsed)
        clock.sleep(min(interval, timeout - elapsed))


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] | None = None,
):
    """
    Retry decorator for idempotent operations.

    retries: number of attempts
    delay: seconds between attempts
    retry_on: exception types to retry
    on_retry: callback(attempt, exception)
    sleep: replaces time.sleep (tests)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt == retries:
                        break
                    (sleep or time.sleep)(delay)
            raise RetryError(f"{fn.__name__} failed after {retries} retries") from last_exc
        return wrapper
    return decorator
