"""Rate limiting data models.

This module contains dataclasses for rate limit state and results.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None


@dataclass
class RateLimitEntry:
    """Sliding-window state for one caller: admitted request timestamps, oldest first."""
    timestamps: Deque[float] = field(default_factory=deque)

    @property
    def last_seen(self) -> Optional[float]:
        return self.timestamps[-1] if self.timestamps else None

    def prune(self, window_start: float) -> None:
        """Drop timestamps at or before window_start."""
        while self.timestamps and self.timestamps[0] <= window_start:
            self.timestamps.popleft()
