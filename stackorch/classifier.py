"""
ErrorClassifier - decide whether a failed command is worth retrying.

Classification is driven by an ordered list of patterns. A pattern is a
plain substring matched case-insensitively anywhere in the captured
output (multi-line output is searched as a whole). The first matching
pattern makes the failure retryable; no match makes it fatal.

Patterns are data: operators extend them through the retry.patterns
key of config.yaml without touching the executor.
"""

from enum import Enum
from typing import Iterable, Optional


# State lock contention, AWS API throttling and eventual-consistency
# timeouts seen when applying EKS stacks with Terragrunt.
DEFAULT_RETRY_PATTERNS: tuple[str, ...] = (
    "Error acquiring the state lock",
    "Failed to acquire the state lock",
    "conflict operation in progress",
    "RequestError: send request failed",
    "timeout while waiting",
    "ThrottlingException",
    "Throttling: Rate exceeded",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "connection reset by peer",
)


class Classification(str, Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


class ErrorClassifier:
    """Classify command output as retryable or fatal."""

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        source = DEFAULT_RETRY_PATTERNS if patterns is None else patterns
        self._patterns: tuple[str, ...] = tuple(p for p in source if p)
        self._folded = tuple(p.casefold() for p in self._patterns)

    @classmethod
    def with_extra_patterns(cls, extra: Iterable[str]) -> "ErrorClassifier":
        """Default patterns followed by extra ones (duplicates dropped)."""
        patterns = list(DEFAULT_RETRY_PATTERNS)
        for pattern in extra:
            if pattern and pattern not in patterns:
                patterns.append(pattern)
        return cls(patterns)

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def match(self, output: Optional[str]) -> Optional[str]:
        """Return the first pattern found in output, or None."""
        if not output:
            return None
        haystack = output.casefold()
        for pattern, folded in zip(self._patterns, self._folded):
            if folded in haystack:
                return pattern
        return None

    def classify(self, output: Optional[str]) -> Classification:
        if self.match(output) is not None:
            return Classification.RETRYABLE
        return Classification.FATAL

    def __repr__(self) -> str:
        return f"ErrorClassifier(patterns={len(self._patterns)})"
