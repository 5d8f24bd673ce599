"""Backoff policy for the attempt loop.

- Exponential delay: base * 2 ** attempt (attempt is 0-indexed), capped
- Fixed longer delay when the tool service signals rate limiting
- Hard attempt cap shared by every failure mode
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from editguard.config.scoring import RecoveryThresholds


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 30_000
    rate_limit_delay_ms: int = 5000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)

    @classmethod
    def from_thresholds(cls, thresholds: RecoveryThresholds, *, max_attempts: int | None = None) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts or thresholds.max_attempts,
            base_delay_ms=thresholds.base_delay_ms,
            max_delay_ms=thresholds.max_delay_ms,
            rate_limit_delay_ms=thresholds.rate_limit_delay_ms,
        )

    def delay_for_attempt(self, attempt: int) -> int:
        """Delay in ms after the given failed attempt (0-indexed)."""
        delay = self.base_delay_ms * (self.multiplier ** max(0, attempt))
        return int(min(delay, self.max_delay_ms))

    def exhausted(self, attempts_made: int) -> bool:
        return attempts_made >= self.max_attempts
