"""
RunResult schema - aggregate outcome of an apply or destroy run.

A RunResult is created when a run starts (status idle -> running) and
finalized as completed or partially_failed. Failures are reported here
rather than raised, so the caller always gets the full picture:
which stacks succeeded, which failed (with their last output), and
which were skipped because something they depend on failed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .attempt import OperationAttempt


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"


class Operation(str, Enum):
    APPLY = "apply"
    DESTROY = "destroy"


@dataclass
class RunResult:
    """
    Result of one orchestrator run.

    Attributes:
        run_id: Unique identifier of the run
        operation: apply or destroy
        status: idle, running, completed or partially_failed
        order: Stack names in the order they were considered
        succeeded: Stacks whose command succeeded
        failed: Stacks whose command failed
        skipped: Stacks not attempted because of a failed or skipped neighbour
        attempts: Attempt log per stack
        last_output: Last captured output per failed stack
        started_at: When the run started
        completed_at: When the run finished (None while running)
        dry_run: True if no commands were invoked
    """
    run_id: str
    operation: Operation
    status: RunStatus = RunStatus.IDLE
    order: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    attempts: dict[str, list[OperationAttempt]] = field(default_factory=dict)
    last_output: dict[str, str] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def start(self) -> None:
        self.status = RunStatus.RUNNING
        self.started_at = _utcnow()

    def finish(self) -> None:
        if self.failed or self.skipped:
            self.status = RunStatus.PARTIALLY_FAILED
        else:
            self.status = RunStatus.COMPLETED
        self.completed_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "operation": self.operation.value,
            "status": self.status.value,
            "order": list(self.order),
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "attempts": {
                stack: [a.to_dict() for a in attempts]
                for stack, attempts in self.attempts.items()
            },
            "last_output": dict(self.last_output),
        }
        if self.started_at:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at:
            result["completed_at"] = self.completed_at.isoformat()
        if self.dry_run:
            result["dry_run"] = True
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunResult":
        """Deserialize from dictionary."""
        return cls(
            run_id=data["run_id"],
            operation=Operation(data["operation"]),
            status=RunStatus(data.get("status", "idle")),
            order=list(data.get("order", [])),
            succeeded=list(data.get("succeeded", [])),
            failed=list(data.get("failed", [])),
            skipped=list(data.get("skipped", [])),
            attempts={
                stack: [OperationAttempt.from_dict(a) for a in attempts]
                for stack, attempts in data.get("attempts", {}).items()
            },
            last_output=dict(data.get("last_output", {})),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            dry_run=data.get("dry_run", False),
        )
