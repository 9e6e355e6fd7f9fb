"""
Attempt schemas - tracking provisioning command invocations.

An OperationAttempt is recorded each time the RetryExecutor runs a
stack's command. Attempts are immutable once recorded and are appended
to the stack's attempt log.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class AttemptOutcome(str, Enum):
    """Classified outcome of a single attempt."""
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class OperationAttempt:
    """
    A single invocation of a provisioning command.

    Attributes:
        stack: Name of the stack the command belongs to (None for ad-hoc commands)
        attempt_n: Attempt number (1-indexed)
        started_at: When the command was started
        completed_at: When the command exited
        exit_status: Process exit status
        raw_output: Combined stdout/stderr
        classified_outcome: success, retryable or fatal
        matched_pattern: Retry pattern that matched the output, if any
    """
    stack: Optional[str]
    attempt_n: int
    started_at: datetime
    completed_at: datetime
    exit_status: int
    raw_output: str
    classified_outcome: AttemptOutcome
    matched_pattern: Optional[str] = None

    def __post_init__(self):
        if self.attempt_n < 1:
            raise ValueError("attempt_n must be >= 1")
        if (self.exit_status == 0) != (self.classified_outcome == AttemptOutcome.SUCCESS):
            raise ValueError("Only attempts with exit status 0 are successful")

    @property
    def succeeded(self) -> bool:
        return self.classified_outcome == AttemptOutcome.SUCCESS

    @property
    def duration_ms(self) -> int:
        """Execution duration in milliseconds."""
        delta = self.completed_at - self.started_at
        return int(delta.total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "stack": self.stack,
            "attempt_n": self.attempt_n,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "exit_status": self.exit_status,
            "raw_output": self.raw_output,
            "classified_outcome": self.classified_outcome.value,
        }
        if self.matched_pattern is not None:
            result["matched_pattern"] = self.matched_pattern
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OperationAttempt":
        """Deserialize from dictionary."""
        return cls(
            stack=data.get("stack"),
            attempt_n=data["attempt_n"],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]),
            exit_status=data["exit_status"],
            raw_output=data.get("raw_output", ""),
            classified_outcome=AttemptOutcome(data["classified_outcome"]),
            matched_pattern=data.get("matched_pattern"),
        )
