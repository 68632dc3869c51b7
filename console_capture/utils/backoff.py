"""
console_capture/utils/backoff.py

Exponential backoff with jitter for reconnection delays.
"""

import random

# past this exponent the delay exceeds any realistic cap
_MAX_EXPONENT = 62


def calculate_backoff(
    attempt: int,
    initial_delay: float = 100,
    max_delay: float = 5000,
    jitter_percent: float = 20,
) -> int:
    """
    Compute the delay before the next reconnection attempt.
    Args:
        attempt: Zero-based attempt number.
        initial_delay: Delay for attempt 0, in milliseconds.
        max_delay: Upper bound for the exponential part, in milliseconds.
        jitter_percent: Random offset range, as a percentage of the capped delay.
    Returns:
        Delay in milliseconds, never negative.
    """
    exponent = min(max(attempt, 0), _MAX_EXPONENT)
    capped_delay = min(initial_delay * 2**exponent, max_delay)

    jitter_range = capped_delay * (jitter_percent / 100)
    jitter = random.uniform(-jitter_range, jitter_range)

    return max(0, round(capped_delay + jitter))
