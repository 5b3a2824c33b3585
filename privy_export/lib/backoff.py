"""Exponential backoff with multiplicative jitter.

The delay for retry n is derived only from the delay used for retry n-1:

    delay = min(max_delay, previous_delay * factor * jitter)
    jitter = 1 + uniform(-jitter_factor, +jitter_factor)

The first retry uses ``initial_delay`` as its "previous" delay, so with the
defaults it waits roughly two seconds. All values are in seconds.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

__all__ = [
    "BackoffController",
    "DEFAULT_INITIAL_DELAY",
    "DEFAULT_MAX_DELAY",
    "DEFAULT_FACTOR",
    "DEFAULT_JITTER_FACTOR",
]

DEFAULT_INITIAL_DELAY: float = 1.0
DEFAULT_MAX_DELAY: float = 60.0
DEFAULT_FACTOR: float = 2.0
DEFAULT_JITTER_FACTOR: float = 0.1

Uniform = Callable[[float, float], float]


@dataclass(frozen=True)
class BackoffController:
    """Computes retry delays. Holds configuration only, never retry state."""

    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    factor: float = DEFAULT_FACTOR
    jitter_factor: float = DEFAULT_JITTER_FACTOR
    uniform: Uniform = field(default=random.uniform, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be > 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")
        if not 0 <= self.jitter_factor < 1:
            raise ValueError("jitter_factor must be in [0, 1)")

    def jitter(self) -> float:
        if self.jitter_factor == 0:
            return 1.0
        return 1.0 + self.uniform(-self.jitter_factor, self.jitter_factor)

    def next_delay(self, attempt: int, previous_delay: Optional[float] = None) -> float:
        """Return the delay before retry number ``attempt`` (1-based).

        ``attempt`` is informational; the growth comes from ``previous_delay``.
        """
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        previous = self.initial_delay if previous_delay is None else previous_delay
        return min(self.max_delay, previous * self.factor * self.jitter())
