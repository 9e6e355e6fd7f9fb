"""Tests for RetryExecutor and command helpers.

Commands are run through ScriptedRunner and a recording sleep, so no
process is spawned (except in TestRunSubprocess) and nothing waits.
"""

import sys

import pytest

from stackorch.classifier import ErrorClassifier
from stackorch.errors import FatalProvisioningError, StackFailure, TransientProvisioningError
from stackorch.executor import ProvisioningCommand, RetryExecutor, build_command, run_subprocess
from stackorch.schemas import (
    AttemptOutcome,
    BackoffStrategy,
    Operation,
    RetryPolicy,
    StackDeclaration,
)

LOCKED = (1, "Error: Error acquiring the state lock")
INVALID = (1, 'Error: Invalid value for variable "cluster_version"')
OK = (0, "Apply complete! Resources: 3 added, 0 changed, 0 destroyed.")


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def command():
    return ProvisioningCommand(args=("terragrunt", "apply"))


def make_executor(runner, sleep, clock=None):
    kwargs = {"runner": runner, "sleep": sleep}
    if clock is not None:
        kwargs["clock"] = clock
    return RetryExecutor(ErrorClassifier(), **kwargs)


class TestRetryLoop:
    def test_success_first_attempt(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [OK]})
        result = make_executor(runner, sleep).run(command, RetryPolicy(max_attempts=3))

        assert result.success
        assert result.attempt_count == 1
        assert result.output == OK[1]
        assert sleep.delays == []

    def test_retryable_twice_then_success(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED, LOCKED, OK]})
        policy = RetryPolicy(max_attempts=3, base_delay=10)
        result = make_executor(runner, sleep).run(command, policy, stack="vpc")

        assert result.success
        assert result.attempt_count == 3
        assert [a.classified_outcome for a in result.attempts] == [
            AttemptOutcome.RETRYABLE, AttemptOutcome.RETRYABLE, AttemptOutcome.SUCCESS,
        ]
        assert [a.attempt_n for a in result.attempts] == [1, 2, 3]
        assert result.attempts[0].matched_pattern == "Error acquiring the state lock"
        assert result.attempts[0].stack == "vpc"
        assert sleep.delays == [10, 10]

    def test_fatal_is_not_retried(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [INVALID]})
        result = make_executor(runner, sleep).run(command, RetryPolicy(max_attempts=5))

        assert not result.success
        assert result.attempt_count == 1
        assert result.last_attempt.classified_outcome == AttemptOutcome.FATAL
        assert result.last_attempt.matched_pattern is None
        assert len(runner.calls) == 1
        assert sleep.delays == []

    def test_retryable_then_fatal_stops(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED, INVALID, OK]})
        result = make_executor(runner, sleep).run(command, RetryPolicy(max_attempts=5, base_delay=1))

        assert not result.success
        assert result.attempt_count == 2
        assert result.output == INVALID[1]

    def test_retries_exhausted(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED]})
        result = make_executor(runner, sleep).run(command, RetryPolicy(max_attempts=3, base_delay=5))

        assert not result.success
        assert result.attempt_count == 3
        assert result.last_attempt.classified_outcome == AttemptOutcome.RETRYABLE
        # no sleep after the final attempt
        assert sleep.delays == [5, 5]

    def test_single_attempt_policy(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED]})
        result = make_executor(runner, sleep).run(command, RetryPolicy(max_attempts=1))

        assert result.attempt_count == 1
        assert sleep.delays == []

    def test_exponential_backoff_capped(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED]})
        policy = RetryPolicy(
            max_attempts=5, base_delay=10, backoff=BackoffStrategy.EXPONENTIAL, max_delay=30,
        )
        make_executor(runner, sleep).run(command, policy)
        assert sleep.delays == [10, 20, 30, 30]

    def test_command_unchanged_between_attempts(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED, LOCKED, OK]})
        make_executor(runner, sleep).run(command, RetryPolicy(max_attempts=3, base_delay=0))
        assert all(call is command for call in runner.calls)

    def test_attempt_log_appended(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED, OK]})
        log = []
        result = make_executor(runner, sleep).run(
            command, RetryPolicy(max_attempts=3, base_delay=0), attempt_log=log,
        )
        assert len(log) == 2
        assert tuple(log) == result.attempts

    def test_timestamps_from_clock(self, scripted_runner, sleep, command, fake_clock):
        runner = scripted_runner({None: [OK]})
        result = make_executor(runner, sleep, clock=fake_clock).run(command, RetryPolicy())
        attempt = result.attempts[0]
        assert attempt.completed_at > attempt.started_at
        assert attempt.duration_ms == 1000

    def test_custom_classifier(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [INVALID, OK]})
        executor = RetryExecutor(ErrorClassifier(["Invalid value"]), runner=runner, sleep=sleep)
        result = executor.run(command, RetryPolicy(max_attempts=2, base_delay=0))
        assert result.success
        assert result.attempt_count == 2


class TestRaiseForStatus:
    def test_success_does_not_raise(self, scripted_runner, sleep, command):
        result = make_executor(scripted_runner({None: [OK]}), sleep).run(command, RetryPolicy())
        result.raise_for_status("vpc")

    def test_exhausted_chains_transient(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [LOCKED]})
        result = make_executor(runner, sleep).run(command, RetryPolicy(max_attempts=2, base_delay=0))
        with pytest.raises(StackFailure) as excinfo:
            result.raise_for_status("vpc")
        assert excinfo.value.attempts == 2
        assert isinstance(excinfo.value.__cause__, TransientProvisioningError)

    def test_fatal_chains_fatal(self, scripted_runner, sleep, command):
        runner = scripted_runner({None: [INVALID]})
        result = make_executor(runner, sleep).run(command, RetryPolicy())
        with pytest.raises(StackFailure) as excinfo:
            result.raise_for_status("eks-cluster")
        assert excinfo.value.last_output == INVALID[1]
        assert isinstance(excinfo.value.__cause__, FatalProvisioningError)


class TestBuildCommand:
    def test_default_args(self):
        decl = StackDeclaration(name="vpc", path="/infra/vpc", env={"AWS_REGION": "us-east-1"})
        command = build_command(decl, Operation.APPLY, ("terragrunt", "apply"))
        assert command.args == ("terragrunt", "apply")
        assert command.cwd == "/infra/vpc"
        assert command.env == {"AWS_REGION": "us-east-1"}

    def test_per_stack_override(self):
        decl = StackDeclaration(
            name="argocd",
            apply_command=("helmfile", "apply"),
            destroy_command=("helmfile", "destroy"),
        )
        assert build_command(decl, Operation.APPLY, ("terragrunt", "apply")).args == ("helmfile", "apply")
        assert build_command(decl, Operation.DESTROY, ("terragrunt", "destroy")).args == ("helmfile", "destroy")

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            ProvisioningCommand(args=())

    def test_str(self):
        assert str(ProvisioningCommand(args=("terragrunt", "apply", "-auto-approve"))) == (
            "terragrunt apply -auto-approve"
        )


class TestRunSubprocess:
    def test_captures_combined_output(self, tmp_path):
        script = "import sys; print('to stdout'); sys.stderr.write('to stderr\\n'); sys.exit(3)"
        status, output = run_subprocess(
            ProvisioningCommand(args=(sys.executable, "-c", script), cwd=str(tmp_path))
        )
        assert status == 3
        assert "to stdout" in output
        assert "to stderr" in output

    def test_env_and_cwd(self, tmp_path):
        script = "import os; print(os.environ['STACK_MARKER']); print(os.getcwd())"
        status, output = run_subprocess(ProvisioningCommand(
            args=(sys.executable, "-c", script),
            cwd=str(tmp_path),
            env={"STACK_MARKER": "vpc-marker"},
        ))
        assert status == 0
        assert "vpc-marker" in output
        assert tmp_path.name in output

    def test_missing_executable(self):
        status, output = run_subprocess(ProvisioningCommand(args=("definitely-not-a-real-binary-xyz",)))
        assert status == 127
        assert "Cannot run" in output

    def test_undecodable_output_replaced(self, tmp_path):
        script = "import sys; sys.stdout.buffer.write(b'Apply complete \\xff\\xfe\\n')"
        status, output = run_subprocess(
            ProvisioningCommand(args=(sys.executable, "-c", script), cwd=str(tmp_path))
        )
        assert status == 0
        assert output.startswith("Apply complete")
        assert "\ufffd" in output

    def test_undecodable_output_still_succeeds(self, tmp_path):
        script = "import sys; sys.stdout.buffer.write(b'Apply complete \\xff\\xfe\\n')"
        command = ProvisioningCommand(args=(sys.executable, "-c", script), cwd=str(tmp_path))

        result = RetryExecutor().run(command, RetryPolicy(max_attempts=3, base_delay=0), stack="vpc")

        assert result.success
        assert result.attempt_count == 1
        assert result.attempts[0].exit_status == 0
