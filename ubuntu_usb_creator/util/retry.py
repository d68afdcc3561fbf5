"""Bounded retry and wait helpers.

Only for idempotent or read-only work (downloads of small files, bulk copy,
polling for a mount to appear). Destructive disk steps never retry.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from ubuntu_usb_creator.logging import get_logger


log = get_logger(source="retry", tags=["retry"])

T = TypeVar("T")


def retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func until it succeeds or attempts run out.

    Delays double after each failure: base_delay, 2*base_delay, ... capped
    at max_delay. The last exception is re-raised unchanged.

    Args:
        func: Zero-argument callable to invoke
        attempts: Maximum number of calls (>= 1)
        base_delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay
        retry_on: Exception types that trigger another attempt
        should_retry: Optional predicate to veto retrying a caught exception
        description: Label used in log messages
        sleep: Sleep function (patched in tests)
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as error:
            if attempt >= attempts or (should_retry and not should_retry(error)):
                raise
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            log.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {error}; "
                f"retrying in {delay:.1f}s"
            )
            sleep(delay)

    raise AssertionError("unreachable")


def wait_for(
    predicate: Callable[[], Optional[T]],
    *,
    timeout: float,
    interval: float = 0.5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[T]:
    """Poll predicate until it returns a truthy value or timeout expires.

    Returns:
        The first truthy value, or None on timeout
    """
    deadline = clock() + timeout
    while True:
        result = predicate()
        if result:
            return result
        if clock() >= deadline:
            return None
        log.trace("Waiting for condition")
        sleep(interval)
