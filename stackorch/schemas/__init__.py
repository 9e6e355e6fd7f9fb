"""
stackorch.schemas - Data structures for the orchestration layer.

StackDeclaration -> Stack -> OperationAttempt -> RunResult

Lifecycle:
1. StackDeclaration: Static, version-controlled description of a stack and its dependencies
2. Stack: Runtime object moved through unapplied/applying/applied/failed/destroying/destroyed
3. OperationAttempt: One invocation of a stack's provisioning command
4. RunResult: Aggregate of an apply or destroy run

LockEntry describes an item in the external state-lock table and
RetryPolicy the bounded retry configuration for a run.
"""

from .stack import (
    DependencyEdge,
    Stack,
    StackDeclaration,
    StackState,
)
from .attempt import (
    AttemptOutcome,
    OperationAttempt,
)
from .retry_policy import (
    BackoffStrategy,
    RetryPolicy,
)
from .lock import (
    LockEntry,
    parse_created_timestamp,
)
from .run_result import (
    Operation,
    RunResult,
    RunStatus,
)

__all__ = [
    # Stacks
    "DependencyEdge",
    "Stack",
    "StackDeclaration",
    "StackState",
    # Attempts
    "AttemptOutcome",
    "OperationAttempt",
    # Retry policy
    "BackoffStrategy",
    "RetryPolicy",
    # Locks
    "LockEntry",
    "parse_created_timestamp",
    # Runs
    "Operation",
    "RunResult",
    "RunStatus",
]
