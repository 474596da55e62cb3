from __future__ import annotations

import random


def backoff_delays(
    max_attempts: int,
    base_delay: float,
    max_delay: float | None = None,
    jitter: bool = True,
) -> list[float]:
    """
    Sleep durations between attempts for exponential backoff.

    Returns max_attempts - 1 delays: base, 2*base, 4*base... capped at max_delay,
    each stretched by up to 50% random jitter when `jitter` is set.
    """
    delays: list[float] = []
    for attempt in range(max(max_attempts - 1, 0)):
        delay = base_delay * (2**attempt)
        if max_delay is not None:
            delay = min(max_delay, delay)
        if jitter and delay:
            delay = delay + random.uniform(0, delay / 2)
        delays.append(delay)
    return delays
