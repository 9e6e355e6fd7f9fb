"""
Error classes for stackorch.

Errors fall into two groups:
- Configuration errors: raised before any stack is touched (bad config,
  bad stack declarations, dependency cycles). The CLI exits with code 2.
- Provisioning errors: describe what happened to a stack's command.
  The orchestrator records them in the RunResult instead of raising, so
  one failing stack never aborts the rest of the run.

TransientProvisioningError and FatalProvisioningError mirror the
retryable/fatal classification done by the ErrorClassifier.
"""

from typing import Optional, Sequence


class StackorchError(Exception):
    """Base exception for stackorch."""
    pass


class ConfigurationError(StackorchError):
    """
    Configuration or stack declaration is invalid.

    Examples:
    - Invalid YAML in config.yaml or stacks.yaml
    - Duplicate stack name
    - Dependency on a stack that is not declared
    """
    pass


class CycleDetectedError(ConfigurationError):
    """The declared stack dependencies contain a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(
            "Dependency cycle detected: " + " -> ".join(self.cycle)
        )


class TransientProvisioningError(StackorchError):
    """
    Provisioning failed with output matching a retry pattern.

    Examples:
    - Error acquiring the state lock
    - AWS API throttling
    - Timeout while waiting for a resource to settle
    """
    pass


class FatalProvisioningError(StackorchError):
    """Provisioning failed with output that matches no retry pattern."""
    pass


class StackFailure(StackorchError):
    """A stack could not be applied or destroyed."""

    def __init__(self, stack: str, last_output: str = "", attempts: int = 0):
        self.stack = stack
        self.last_output = last_output
        self.attempts = attempts
        super().__init__(f"Stack '{stack}' failed after {attempts} attempt(s)")


class LockTableError(StackorchError):
    """The lock table could not be read or written (credentials, permissions, network)."""
    pass


class LockReleaseRace(StackorchError):
    """The lock was released or re-acquired by someone else before we deleted it."""

    def __init__(self, lock_id: str, detail: Optional[str] = None):
        self.lock_id = lock_id
        message = f"Lock '{lock_id}' was already released"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
