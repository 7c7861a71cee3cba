"""
Retrying predicate combinator.

Both the DOM query engine and the assertion engine wait the same way: attempt,
and if the attempt is not satisfied sleep for a fixed interval and attempt again,
until the deadline passes. The attempt always runs at least once, and the last
observation is kept so callers can report what they saw.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")

Attempt = Callable[[], Awaitable[tuple[bool, T]]]


@dataclass
class PollOutcome(Generic[T]):
    """Result of an eventually() loop."""

    satisfied: bool
    observed: T | None
    attempts: int
    elapsed_ms: int


async def eventually(
    attempt: Attempt[T],
    timeout_ms: int,
    interval_ms: int,
    monotonic: Callable[[], float] = time.monotonic,
) -> PollOutcome[T]:
    """
    Run attempt until it reports success or timeout_ms elapses.

    Args:
        attempt: Coroutine factory returning (satisfied, observed)
        timeout_ms: Retry window; 0 means a single attempt
        interval_ms: Sleep between attempts
        monotonic: Time source for the deadline (wall time, never the virtual clock)

    Returns:
        PollOutcome with the last observation
    """
    if timeout_ms < 0:
        raise ValueError("timeout_ms must be non-negative")
    if interval_ms <= 0:
        raise ValueError("interval_ms must be positive")

    started = monotonic()
    deadline = started + timeout_ms / 1000
    attempts = 0
    observed: T | None = None

    while True:
        attempts += 1
        satisfied, observed = await attempt()
        now = monotonic()
        if satisfied:
            return PollOutcome(True, observed, attempts, int((now - started) * 1000))
        if now >= deadline:
            return PollOutcome(False, observed, attempts, int((now - started) * 1000))
        await asyncio.sleep(min(interval_ms / 1000, max(deadline - now, 0)))
