"""RetryPolicy schema - bounded retry configuration for provisioning commands."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to run a command and how long to wait in between.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        base_delay: Delay in seconds before the first retry
        backoff: fixed (always base_delay) or exponential (base_delay * 2^(n-1))
        max_delay: Upper bound for any single delay, in seconds
    """
    max_attempts: int = 5
    base_delay: float = 10.0
    backoff: BackoffStrategy = BackoffStrategy.FIXED
    max_delay: float = 300.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")

    def delay_for(self, attempt_n: int) -> float:
        """Seconds to wait after failed attempt number attempt_n (1-indexed)."""
        if self.backoff == BackoffStrategy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt_n - 1))
        else:
            delay = self.base_delay
        return min(delay, self.max_delay)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "backoff": self.backoff.value,
            "max_delay": self.max_delay,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetryPolicy":
        defaults = cls()
        return cls(
            max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
            base_delay=float(data.get("base_delay", defaults.base_delay)),
            backoff=BackoffStrategy(data.get("backoff", defaults.backoff.value)),
            max_delay=float(data.get("max_delay", defaults.max_delay)),
        )
