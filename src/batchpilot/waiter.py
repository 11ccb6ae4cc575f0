"""Bounded polling primitives with timeout and cooperative cancellation."""

from __future__ import annotations

import math
import time
from typing import Any, Callable, TypeVar

from batchpilot.cancellation import CancellationToken
from batchpilot.constants import (
    ELEMENT_POLL_MS,
    GENERATION_INITIAL_DELAY_MS,
    GENERATION_POLL_MS,
    GENERATION_SETTLE_MS,
)
from batchpilot.errors import WaitTimeout


T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], None]


def wait_until(
    check: Callable[[], T | None],
    *,
    timeout_ms: int,
    interval_ms: int = ELEMENT_POLL_MS,
    token: CancellationToken | None = None,
    description: str = "condition",
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> T:
    """Poll `check` until it yields a value other than None/False.

    The token is consulted before every check. The last check happens at the
    deadline, so a timeout is never raised before `timeout_ms` has elapsed.
    """
    interval = max(0.001, interval_ms / 1000.0)
    deadline = clock() + max(0, timeout_ms) / 1000.0
    while True:
        if token is not None:
            token.check_or_fail(f"waiting for {description}")
        value = check()
        if value is not None and value is not False:
            return value
        now = clock()
        if now >= deadline:
            raise WaitTimeout(description, timeout_ms)
        sleep(min(interval, deadline - now))


def pause(
    seconds: float,
    *,
    token: CancellationToken | None = None,
    context: str = "pause",
    slice_ms: int = ELEMENT_POLL_MS,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> None:
    """Fixed delay that still observes the stop signal every `slice_ms`."""
    deadline = clock() + max(0.0, seconds)
    step = max(0.001, slice_ms / 1000.0)
    while True:
        if token is not None:
            token.check_or_fail(context)
        remaining = deadline - clock()
        if remaining <= 0:
            return
        sleep(min(step, remaining))


def generation_check_count(budget_seconds: float, interval_ms: int = GENERATION_POLL_MS) -> int:
    interval_seconds = max(0.001, interval_ms / 1000.0)
    return max(1, int(math.floor(float(budget_seconds) / interval_seconds)))


def wait_for_completion(
    is_busy: Callable[[], Any],
    *,
    budget_seconds: float,
    token: CancellationToken | None = None,
    description: str = "generation",
    proceed_on_timeout: bool = False,
    interval_ms: int = GENERATION_POLL_MS,
    initial_delay_ms: int = GENERATION_INITIAL_DELAY_MS,
    settle_ms: int = GENERATION_SETTLE_MS,
    log: Callable[[str], None] | None = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> bool:
    """Wait for a long-running external process to finish.

    Checks every `interval_ms` for at most floor(budget / interval) attempts,
    then adds a settle delay after success. Returns False when the budget ran
    out and `proceed_on_timeout` is set.
    """
    checks = generation_check_count(budget_seconds, interval_ms)
    if log is not None:
        log(f"waiting for {description}: up to {checks} checks, budget {budget_seconds:g}s")
    pause(
        initial_delay_ms / 1000.0,
        token=token,
        context=f"before {description}",
        clock=clock,
        sleep=sleep,
    )
    try:
        wait_until(
            lambda: not is_busy(),
            timeout_ms=(checks - 1) * interval_ms,
            interval_ms=interval_ms,
            token=token,
            description=description,
            clock=clock,
            sleep=sleep,
        )
    except WaitTimeout as exc:
        if not proceed_on_timeout:
            raise WaitTimeout(description, int(budget_seconds * 1000)) from exc
        if log is not None:
            log(f"{description} still busy after {budget_seconds:g}s, proceeding anyway")
        return False
    if log is not None:
        log(f"{description} complete")
    pause(
        settle_ms / 1000.0,
        token=token,
        context=f"settling after {description}",
        clock=clock,
        sleep=sleep,
    )
    return True
