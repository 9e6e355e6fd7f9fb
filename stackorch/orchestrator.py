"""
StackOrchestrator - apply or destroy every stack of a graph in order.

Stacks run one at a time, strictly in graph order: later stacks consume
outputs (VPC ids, cluster endpoints, certificates) of earlier ones, so
nothing runs in parallel and nothing is reordered around a failure.

Partial-failure containment:
- apply: a stack is skipped when any of its declared dependencies
  failed or was skipped. Independent branches keep going.
- destroy: a stack is skipped when any stack depending on it failed or
  was skipped, i.e. is still standing.

Provisioning failures never raise out of apply_all/destroy_all; they are
reported in the RunResult. Only configuration errors (raised while the
graph is built) stop a run before it starts.

Progress events passed to progress_callback(event, **kwargs):
    'run_start', 'stack_start', 'stack_ok', 'stack_fail', 'stack_skip', 'run_done'
"""

import logging
from collections.abc import Callable
from typing import Any, Optional, Sequence

from stackorch.config import DEFAULT_APPLY_COMMAND, DEFAULT_DESTROY_COMMAND, StackorchConfig
from stackorch.executor import RetryExecutor, build_command
from stackorch.graph import StackGraph
from stackorch.run_store import RunStore, generate_run_id
from stackorch.schemas import (
    Operation,
    OperationAttempt,
    RetryPolicy,
    RunResult,
    RunStatus,
    StackState,
)

logger = logging.getLogger(__name__)

_IN_PROGRESS = {Operation.APPLY: StackState.APPLYING, Operation.DESTROY: StackState.DESTROYING}
_DONE = {Operation.APPLY: StackState.APPLIED, Operation.DESTROY: StackState.DESTROYED}


class StackOrchestrator:
    """
    Runs stack commands in dependency order through a RetryExecutor.

    Usage:
        orchestrator = StackOrchestrator(RetryExecutor(config.classifier()))
        result = orchestrator.apply_all(graph, config.retry)
        if not result.success:
            print(result.failed, result.skipped)
    """

    def __init__(
        self,
        executor: RetryExecutor,
        apply_command: Sequence[str] = DEFAULT_APPLY_COMMAND,
        destroy_command: Sequence[str] = DEFAULT_DESTROY_COMMAND,
        store: Optional[RunStore] = None,
        progress_callback: Optional[Callable[..., Any]] = None,
    ):
        self._executor = executor
        self._default_args = {
            Operation.APPLY: tuple(apply_command),
            Operation.DESTROY: tuple(destroy_command),
        }
        self._store = store
        self._progress_callback = progress_callback
        self.status = RunStatus.IDLE

    @classmethod
    def from_config(
        cls,
        config: StackorchConfig,
        store: Optional[RunStore] = None,
        progress_callback: Optional[Callable[..., Any]] = None,
        **executor_kwargs: Any,
    ) -> "StackOrchestrator":
        """Build an orchestrator using the configured commands and retry patterns."""
        return cls(
            RetryExecutor(config.classifier(), **executor_kwargs),
            apply_command=config.apply_command,
            destroy_command=config.destroy_command,
            store=store,
            progress_callback=progress_callback,
        )

    def apply_all(self, graph: StackGraph, policy: RetryPolicy, dry_run: bool = False) -> RunResult:
        """Apply every stack in apply order."""
        return self._run(graph, policy, Operation.APPLY, dry_run)

    def destroy_all(self, graph: StackGraph, policy: RetryPolicy, dry_run: bool = False) -> RunResult:
        """Destroy every stack in destroy order."""
        return self._run(graph, policy, Operation.DESTROY, dry_run)

    def _emit(self, event: str, **kwargs: Any) -> None:
        if self._progress_callback:
            self._progress_callback(event, **kwargs)

    def _run(
        self,
        graph: StackGraph,
        policy: RetryPolicy,
        operation: Operation,
        dry_run: bool,
    ) -> RunResult:
        if operation == Operation.APPLY:
            order = graph.apply_order()
        else:
            order = graph.destroy_order()

        result = RunResult(run_id=generate_run_id(), operation=operation, order=order, dry_run=dry_run)
        result.start()
        self.status = RunStatus.RUNNING

        logger.info(f"Starting {operation.value} run {result.run_id}: {len(order)} stacks")
        logger.info(f"  order: {' -> '.join(order)}")
        self._emit("run_start", run_id=result.run_id, operation=operation.value, order=order)

        if not dry_run:
            for name in order:
                self._run_stack(graph, name, policy, operation, result)

        result.finish()
        self.status = result.status

        logger.info(
            f"Run {result.run_id} {result.status.value}: "
            f"succeeded={len(result.succeeded)}, failed={len(result.failed)}, "
            f"skipped={len(result.skipped)}, duration={result.duration_ms}ms"
        )
        if self._store is not None:
            self._store.store_result(result)
        self._emit("run_done", run_id=result.run_id, status=result.status.value)

        return result

    def _run_stack(
        self,
        graph: StackGraph,
        name: str,
        policy: RetryPolicy,
        operation: Operation,
        result: RunResult,
    ) -> None:
        stack = graph.stack(name)

        poisoned = set(result.failed) | set(result.skipped)
        if operation == Operation.APPLY:
            neighbours = stack.dependencies
        else:
            neighbours = graph.direct_dependents(name)
        blockers = [n for n in neighbours if n in poisoned]

        if blockers:
            result.skipped.append(name)
            logger.warning(f"  SKIP {name}: blocked by {', '.join(blockers)}")
            self._emit("stack_skip", stack=name, blocked_by=blockers)
            return

        command = build_command(stack.declaration, operation, self._default_args[operation])
        attempts: list[OperationAttempt] = result.attempts.setdefault(name, [])

        stack.transition(_IN_PROGRESS[operation])
        logger.info(f"  Running: {name} ({command})")
        self._emit("stack_start", stack=name)

        try:
            outcome = self._executor.run(command, policy, stack=name, attempt_log=attempts)
            success, output = outcome.success, outcome.output
        except Exception as e:
            logger.exception(f"  {name}: command could not be run")
            success, output = False, str(e)

        if self._store is not None:
            self._store.store_attempts(result.run_id, name, attempts)

        if success:
            stack.transition(_DONE[operation])
            result.succeeded.append(name)
            logger.info(f"    ok {name} ({len(attempts)} attempt(s))")
            self._emit("stack_ok", stack=name, attempts=len(attempts))
            return

        stack.transition(StackState.FAILED)
        result.failed.append(name)
        result.last_output[name] = output

        if operation == Operation.APPLY:
            downstream = graph.dependents_of(name)
        else:
            downstream = graph.dependencies_of(name)
        logger.error(f"    FAIL {name} after {len(attempts)} attempt(s)")
        if downstream:
            logger.error(f"    blocking: {', '.join(downstream)}")
        self._emit("stack_fail", stack=name, attempts=len(attempts), blocking=downstream)
