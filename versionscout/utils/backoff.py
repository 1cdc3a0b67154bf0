"""
Backoff calculation for request retries.

Shared by:
- RequestScheduler retry pauses (versionscout/crawler/client.py)
- RetryPolicy (versionscout/crawler/retry.py)

The service punishes bursts, so retries back off linearly with the attempt
number rather than exponentially: delay = base_delay * attempt * multiplier.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffConfig:
    """Configuration for linear backoff calculation.

    - base_delay: Delay unit in seconds (default: 1.0, the scheduler's sleep_for)
    - multiplier: Factor applied per attempt (default: 2.0)
    - max_delay: Maximum delay cap in seconds (default: 120.0)
    - jitter_factor: Random variation factor (default: 0, no jitter)

    Example:
        >>> config = BackoffConfig(base_delay=2.0, max_delay=60.0)
    """

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 120.0
    jitter_factor: float = 0.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.multiplier <= 0:
            raise ValueError("multiplier must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.jitter_factor < 0 or self.jitter_factor > 1:
            raise ValueError("jitter_factor must be between 0 and 1")


def calculate_backoff(
    attempt: int,
    config: BackoffConfig | None = None,
    *,
    add_jitter: bool = True,
) -> float:
    """Calculate the pause before a retry.

    delay = min(base_delay * attempt * multiplier, max_delay)

    Args:
        attempt: Retry number (1-indexed, 1 = first retry)
        config: Backoff configuration (default: BackoffConfig())
        add_jitter: Whether to add random jitter when jitter_factor > 0

    Returns:
        Delay in seconds

    Example:
        >>> calculate_backoff(1)  # First retry
        2.0
        >>> calculate_backoff(3)  # Third retry
        6.0
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")

    if config is None:
        config = BackoffConfig()

    delay = min(config.base_delay * attempt * config.multiplier, config.max_delay)

    if add_jitter and config.jitter_factor > 0:
        jitter_range = delay * config.jitter_factor
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)


def calculate_total_delay(
    max_retries: int,
    config: BackoffConfig | None = None,
) -> float:
    """Calculate total pause for all retry attempts (worst case).

    Useful for estimating how long a persistently failing request can hold
    up the queue.

    Args:
        max_retries: Maximum number of retry attempts
        config: Backoff configuration

    Returns:
        Total delay in seconds (without jitter)

    Example:
        >>> calculate_total_delay(3)  # 2 + 4 + 6
        12.0
    """
    if max_retries < 0:
        raise ValueError("max_retries must be non-negative")

    if config is None:
        config = BackoffConfig()

    return sum(
        calculate_backoff(attempt, config, add_jitter=False)
        for attempt in range(1, max_retries + 1)
    )
