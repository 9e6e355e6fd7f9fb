"""
RetryExecutor - run a provisioning command under a bounded retry policy.

Execution flow for one command:
1. Invoke the command, capturing combined stdout/stderr and exit status
2. Record an OperationAttempt (appended to the caller's attempt log)
3. Exit status 0: return success
4. Otherwise classify the output:
   a. fatal: return failure immediately
   b. retryable: sleep per the policy's backoff and run again, until
      max_attempts is reached

The executor is a pure retry wrapper: the command is frozen and runs
unchanged on every attempt. The command runner and sleep function are
injectable so tests never spawn processes or wait.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from stackorch.classifier import ErrorClassifier
from stackorch.errors import FatalProvisioningError, StackFailure, TransientProvisioningError
from stackorch.schemas import (
    AttemptOutcome,
    Operation,
    OperationAttempt,
    RetryPolicy,
    StackDeclaration,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProvisioningCommand:
    """
    An external command, opaque to the orchestrator.

    Attributes:
        args: Program and arguments
        cwd: Working directory (None for the current directory)
        env: Extra environment variables layered over the current environment
    """
    args: tuple[str, ...]
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.args:
            raise ValueError("Command must have at least one argument")

    def __str__(self) -> str:
        return " ".join(self.args)


def build_command(
    declaration: StackDeclaration,
    operation: Operation,
    default_args: Sequence[str],
) -> ProvisioningCommand:
    """Render the apply/destroy command for a stack, honouring per-stack overrides."""
    if operation == Operation.APPLY:
        override = declaration.apply_command
    else:
        override = declaration.destroy_command
    return ProvisioningCommand(
        args=tuple(override or default_args),
        cwd=declaration.path,
        env=dict(declaration.env),
    )


CommandRunner = Callable[[ProvisioningCommand], tuple[int, str]]


def run_subprocess(command: ProvisioningCommand) -> tuple[int, str]:
    """
    Run a command to completion.

    Returns:
        Tuple of (exit_status, combined stdout/stderr). A command that cannot be
        started is reported with the shell's conventional 127/126 status.
    """
    env = {**os.environ, **command.env} if command.env else None
    try:
        completed = subprocess.run(
            list(command.args),
            cwd=command.cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except FileNotFoundError as e:
        return 127, f"Cannot run '{command}': {e}"
    except PermissionError as e:
        return 126, f"Cannot run '{command}': {e}"
    return completed.returncode, completed.stdout or ""


@dataclass(frozen=True)
class CommandResult:
    """
    Result of running a command under a retry policy.

    Attributes:
        success: True if the final attempt exited 0
        output: Output of the final attempt
        attempts: Every attempt made, in order
    """
    success: bool
    output: str
    attempts: tuple[OperationAttempt, ...]

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def last_attempt(self) -> Optional[OperationAttempt]:
        return self.attempts[-1] if self.attempts else None

    def raise_for_status(self, stack: str = "<command>") -> None:
        """
        Raise StackFailure if the command failed.

        The failure is chained from TransientProvisioningError when retries were
        exhausted, or FatalProvisioningError when the output matched no pattern.
        """
        if self.success:
            return
        last = self.last_attempt
        if last is not None and last.classified_outcome == AttemptOutcome.RETRYABLE:
            cause: Exception = TransientProvisioningError(
                f"Retries exhausted on '{last.matched_pattern}'"
            )
        else:
            cause = FatalProvisioningError("Output matched no retry pattern")
        raise StackFailure(stack, self.output, self.attempt_count) from cause


class RetryExecutor:
    """
    Runs commands with retry on classified-transient failures.

    Usage:
        executor = RetryExecutor(ErrorClassifier())
        result = executor.run(command, RetryPolicy(max_attempts=3), stack="vpc")
    """

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        runner: CommandRunner = run_subprocess,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._classifier = classifier or ErrorClassifier()
        self._runner = runner
        self._sleep = sleep
        self._clock = clock

    @property
    def classifier(self) -> ErrorClassifier:
        return self._classifier

    def run(
        self,
        command: ProvisioningCommand,
        policy: RetryPolicy,
        stack: Optional[str] = None,
        attempt_log: Optional[list[OperationAttempt]] = None,
    ) -> CommandResult:
        """
        Run command until it succeeds, fails fatally, or attempts run out.

        Args:
            command: The command to run (never modified)
            policy: Retry policy for this run
            stack: Stack name recorded on each attempt
            attempt_log: List that every attempt is appended to

        Returns:
            CommandResult with the final output and all attempts
        """
        log = attempt_log if attempt_log is not None else []
        recorded: list[OperationAttempt] = []
        label = stack or str(command)
        output = ""

        for attempt_n in range(1, policy.max_attempts + 1):
            logger.debug(f"{label}: attempt {attempt_n}/{policy.max_attempts}: {command}")
            started_at = self._clock()
            exit_status, output = self._runner(command)
            completed_at = self._clock()

            if exit_status == 0:
                outcome, pattern = AttemptOutcome.SUCCESS, None
            else:
                pattern = self._classifier.match(output)
                outcome = AttemptOutcome.RETRYABLE if pattern else AttemptOutcome.FATAL

            attempt = OperationAttempt(
                stack=stack,
                attempt_n=attempt_n,
                started_at=started_at,
                completed_at=completed_at,
                exit_status=exit_status,
                raw_output=output,
                classified_outcome=outcome,
                matched_pattern=pattern,
            )
            log.append(attempt)
            recorded.append(attempt)

            if outcome == AttemptOutcome.SUCCESS:
                logger.info(f"{label}: succeeded on attempt {attempt_n}")
                return CommandResult(True, output, tuple(recorded))

            if outcome == AttemptOutcome.FATAL:
                logger.error(f"{label}: failed with exit status {exit_status}, not retrying")
                return CommandResult(False, output, tuple(recorded))

            if attempt_n < policy.max_attempts:
                delay = policy.delay_for(attempt_n)
                logger.warning(
                    f"{label}: retryable failure ({pattern}). "
                    f"Retrying in {delay:g}s (attempt {attempt_n}/{policy.max_attempts})"
                )
                self._sleep(delay)

        logger.error(f"{label}: giving up after {policy.max_attempts} attempts")
        return CommandResult(False, output, tuple(recorded))
