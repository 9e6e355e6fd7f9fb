"""
CLI interface for stackorch.

Applies and destroys the stacks declared in stacks.yaml in dependency
order, and manages stale Terraform state locks.

Exit codes:
    0  everything succeeded
    1  a stack failed (or was skipped), or a lock could not be released
    2  configuration or dependency-graph error
"""

from pathlib import Path
from typing import Any, Optional

import click
import yaml
from rich.table import Table

from stackorch import __version__
from stackorch.config import StackorchConfig, get_stackorch_home, load_config
from stackorch.errors import ConfigurationError, LockTableError
from stackorch.graph import StackGraph
from stackorch.locks import DynamoDBLockTable, LockManager, ReleaseReason
from stackorch.orchestrator import StackOrchestrator
from stackorch.registry import StackRegistry
from stackorch.run_store import FileRunStore
from stackorch.schemas import LockEntry, RunResult
from stackorch.utils import (
    console,
    format_duration,
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_logging,
    tail,
)

EXIT_OK = 0
EXIT_STACK_FAILURE = 1
EXIT_CONFIG_ERROR = 2


@click.group()
@click.version_option(version=__version__, prog_name="stackorch")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Configuration file (default: $STACKORCH_HOME/config.yaml)",
)
@click.option(
    "--stacks",
    "stacks_file",
    type=click.Path(path_type=Path),
    help="Stack declarations file (default: stacks_file from config, stacks.yaml)",
)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, config_path: Optional[Path], stacks_file: Optional[Path], verbose: bool):
    """
    stackorch - dependency-ordered apply/destroy for infrastructure stacks.

    Runs each stack's Terragrunt command in order, retries state-lock and
    throttling errors, skips stacks whose dependencies failed, and cleans
    up stale state locks.
    """
    ctx.ensure_object(dict)
    ctx.obj["stacks_file"] = stacks_file
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        # init must still work with a broken config; other commands check _config()
        ctx.obj["config_error"] = str(e)
        setup_logging("DEBUG" if verbose else "INFO")
        return

    ctx.obj["config"] = config
    setup_logging(
        "DEBUG" if verbose else config.log_level,
        log_format=config.log_format,
        log_file=config.resolve_log_file(),
    )


def _config(ctx) -> StackorchConfig:
    if "config" not in ctx.obj:
        print_error(f"Config not loaded: {ctx.obj.get('config_error', 'unknown error')}")
        ctx.exit(EXIT_CONFIG_ERROR)
    return ctx.obj["config"]


def _graph(ctx, config: StackorchConfig) -> StackGraph:
    stacks_file = ctx.obj.get("stacks_file") or Path(config.stacks_file)
    try:
        return StackRegistry(stacks_file).graph()
    except ConfigurationError as e:
        print_error(str(e))
        ctx.exit(EXIT_CONFIG_ERROR)


def _select(ctx, graph: StackGraph, stack: Optional[str], all_stacks: bool, related: list[str]) -> StackGraph:
    if all_stacks == bool(stack):
        raise click.UsageError("Specify exactly one of --all or --stack NAME")
    if all_stacks:
        return graph
    if stack not in graph:
        print_error(f"Unknown stack: {stack}")
        print_info(f"Declared stacks: {', '.join(graph.apply_order())}")
        ctx.exit(EXIT_CONFIG_ERROR)
    return graph.subgraph([stack, *related])


def build_orchestrator(config: StackorchConfig) -> StackOrchestrator:
    """Orchestrator wired to the configured commands, run store and console progress."""
    return StackOrchestrator.from_config(
        config,
        store=FileRunStore(config.resolve_runs_dir()),
        progress_callback=_print_progress,
    )


def build_lock_manager(config: StackorchConfig) -> LockManager:
    return LockManager(DynamoDBLockTable(config.lock_table, config.lock_region))


def _print_progress(event: str, **kwargs: Any) -> None:
    if event == "run_start":
        print_banner(f"{kwargs['operation']} {len(kwargs['order'])} stack(s)")
    elif event == "stack_start":
        print_info(f"{kwargs['stack']} ...")
    elif event == "stack_ok":
        print_success(f"{kwargs['stack']} ({kwargs['attempts']} attempt(s))")
    elif event == "stack_fail":
        print_error(f"{kwargs['stack']} failed after {kwargs['attempts']} attempt(s)")
    elif event == "stack_skip":
        print_warning(f"{kwargs['stack']} skipped (blocked by {', '.join(kwargs['blocked_by'])})")


def _print_report(result: RunResult) -> None:
    table = Table(title=f"{result.operation.value} run {result.run_id}")
    table.add_column("Stack")
    table.add_column("Result")
    table.add_column("Attempts", justify="right")

    outcome = {name: "[green]succeeded[/green]" for name in result.succeeded}
    outcome.update({name: "[red]failed[/red]" for name in result.failed})
    outcome.update({name: "[yellow]skipped[/yellow]" for name in result.skipped})
    for name in result.order:
        table.add_row(name, outcome.get(name, "-"), str(len(result.attempts.get(name, []))))
    console.print(table)

    for name in result.failed:
        print_error(f"{name}: last output")
        console.print(tail(result.last_output.get(name, "")), markup=False, highlight=False)

    if result.duration_ms is not None:
        print_info(f"Finished in {format_duration(result.duration_ms / 1000)}")


def _run(ctx, graph: StackGraph, config: StackorchConfig, destroy: bool, dry_run: bool) -> None:
    orchestrator = build_orchestrator(config)
    if destroy:
        result = orchestrator.destroy_all(graph, config.retry, dry_run=dry_run)
    else:
        result = orchestrator.apply_all(graph, config.retry, dry_run=dry_run)

    if dry_run:
        print_info("Dry run, no commands executed. Order:")
        for index, name in enumerate(result.order, start=1):
            click.echo(f"  {index}. {name}")
        return

    _print_report(result)
    if result.success:
        print_success(f"All {len(result.succeeded)} stack(s) {result.operation.value} succeeded")
        return
    print_error(
        f"{len(result.failed)} failed, {len(result.skipped)} skipped, "
        f"{len(result.succeeded)} succeeded"
    )
    ctx.exit(EXIT_STACK_FAILURE)


@main.command("apply")
@click.option("--all", "all_stacks", is_flag=True, help="Apply every declared stack")
@click.option("--stack", help="Apply a single stack")
@click.option("--with-dependencies", is_flag=True, help="With --stack: also apply everything it depends on")
@click.option("--dry-run", is_flag=True, help="Print the apply order without running anything")
@click.pass_context
def apply(ctx, all_stacks: bool, stack: Optional[str], with_dependencies: bool, dry_run: bool):
    """
    Apply stacks in dependency order.

    Examples:

        stackorch apply --all

        stackorch apply --stack eks-cluster --with-dependencies

        stackorch apply --all --dry-run
    """
    config = _config(ctx)
    graph = _graph(ctx, config)
    related = graph.dependencies_of(stack) if stack in graph and with_dependencies else []
    selected = _select(ctx, graph, stack, all_stacks, related)
    _run(ctx, selected, config, destroy=False, dry_run=dry_run)


@main.command("destroy")
@click.option("--all", "all_stacks", is_flag=True, help="Destroy every declared stack")
@click.option("--stack", help="Destroy a single stack")
@click.option("--with-dependents", is_flag=True, help="With --stack: also destroy everything depending on it")
@click.option(
    "--ignore-dependents",
    is_flag=True,
    help="With --stack: destroy it even though stacks depending on it are declared",
)
@click.option("--dry-run", is_flag=True, help="Print the destroy order without running anything")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def destroy(
    ctx,
    all_stacks: bool,
    stack: Optional[str],
    with_dependents: bool,
    ignore_dependents: bool,
    dry_run: bool,
    yes: bool,
):
    """
    Destroy stacks in reverse dependency order.

    Examples:

        stackorch destroy --all --yes

        stackorch destroy --stack argocd

        stackorch destroy --stack vpc --with-dependents

    A single stack that others depend on is refused unless
    --with-dependents or --ignore-dependents is given.
    """
    config = _config(ctx)
    graph = _graph(ctx, config)
    related = graph.dependents_of(stack) if stack in graph and with_dependents else []
    selected = _select(ctx, graph, stack, all_stacks, related)

    standing = graph.dependents_of(stack) if stack in graph and not with_dependents else []
    if standing and not ignore_dependents:
        print_error(f"Cannot destroy {stack}: still depended on by {', '.join(standing)}")
        print_info("Use --with-dependents to destroy them first, or --ignore-dependents")
        ctx.exit(EXIT_STACK_FAILURE)
    if standing:
        print_warning(f"Leaving stacks that depend on {stack} standing: {', '.join(standing)}")

    if not dry_run and not yes:
        names = ", ".join(selected.destroy_order())
        prompt = f"Destroy {len(selected)} stack(s): {names}?"
        if standing:
            prompt = f"Destroy {len(selected)} stack(s): {names}, leaving {', '.join(standing)} standing?"
        if not click.confirm(prompt):
            print_info("Aborted")
            return

    _run(ctx, selected, config, destroy=True, dry_run=dry_run)


@main.group("stacks")
def stacks_group():
    """Inspect declared stacks."""
    pass


@stacks_group.command("list")
@click.pass_context
def list_stacks(ctx):
    """List stacks in apply order with their dependencies."""
    config = _config(ctx)
    graph = _graph(ctx, config)

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Stack")
    table.add_column("Depends on")
    table.add_column("Path")
    for index, stack in enumerate(graph, start=1):
        table.add_row(
            str(index),
            stack.name,
            ", ".join(stack.dependencies) or "-",
            stack.declaration.path or "-",
        )
    console.print(table)


# =============================================================================
# Lock commands
# =============================================================================

@main.group("locks")
def locks_group():
    """Inspect and release Terraform state locks."""
    pass


def _format_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "unknown"
    return format_duration(max(seconds, 0))


@locks_group.command("list")
@click.option("--max-age", type=int, help="Stale threshold in seconds (default: locks.max_age_seconds)")
@click.pass_context
def list_locks(ctx, max_age: Optional[int]):
    """
    List locks, marking the ones older than --max-age as stale.

    Locks without a readable creation time are listed as unknown age
    and never counted as stale.
    """
    config = _config(ctx)
    threshold = max_age if max_age is not None else config.lock_max_age_seconds
    manager = build_lock_manager(config)
    try:
        report = manager.scan(threshold)
    except LockTableError as e:
        print_error(str(e))
        ctx.exit(EXIT_STACK_FAILURE)

    rows: list[tuple[LockEntry, str]] = (
        [(e, "[red]stale[/red]") for e in report.stale]
        + [(e, "[yellow]unknown age[/yellow]") for e in report.unknown_age]
        + [(e, "[green]fresh[/green]") for e in report.fresh]
    )
    if not rows:
        print_info(f"No locks in {config.lock_table}")
        return

    table = Table(title=f"{config.lock_table} (stale after {format_duration(threshold)})")
    table.add_column("Lock ID")
    table.add_column("Status")
    table.add_column("Age", justify="right")
    table.add_column("Who")
    table.add_column("Operation")
    for entry, status in rows:
        table.add_row(
            entry.lock_id,
            status,
            _format_age(report.age_of(entry)),
            entry.who or "-",
            entry.operation or "-",
        )
    console.print(table)
    print_info(
        f"{len(report.stale)} stale, {len(report.unknown_age)} unknown age, {len(report.fresh)} fresh"
    )


@locks_group.command("release")
@click.argument("lock_id")
@click.pass_context
def release_lock(ctx, lock_id: str):
    """Release the lock LOCK_ID."""
    config = _config(ctx)
    result = build_lock_manager(config).release_by_id(lock_id)
    if result.success:
        print_success(f"Released lock {lock_id}")
        return
    if result.reason == ReleaseReason.ALREADY_RELEASED:
        print_warning(f"Lock {lock_id} was already released ({result.detail})")
    elif result.reason == ReleaseReason.NOT_A_LOCK:
        print_error(f"Not releasing {lock_id}: {result.detail}")
    else:
        print_error(f"Failed to release lock {lock_id}: {result.detail}")
    ctx.exit(EXIT_STACK_FAILURE)


@locks_group.command("clean")
@click.option("--max-age", type=int, help="Stale threshold in seconds (default: locks.max_age_seconds)")
@click.option("--yes", is_flag=True, help="Release every stale lock without asking")
@click.pass_context
def clean_locks(ctx, max_age: Optional[int], yes: bool):
    """
    Release stale locks, asking for each one unless --yes is given.

    Locks with unknown age are reported but never released here; use
    'stackorch locks release LOCK_ID' after checking them.
    """
    config = _config(ctx)
    threshold = max_age if max_age is not None else config.lock_max_age_seconds
    manager = build_lock_manager(config)

    def confirm(entry: LockEntry) -> bool:
        click.echo(f"Stale lock: {entry.lock_id}")
        if entry.created_at is not None:
            click.echo(f"  Created: {entry.created_at.isoformat()}")
        if entry.who:
            click.echo(f"  Held by: {entry.who} ({entry.operation or 'unknown operation'})")
        return yes or click.confirm("Delete this lock?", default=False)

    try:
        cleanup = manager.clean(threshold, confirm)
    except LockTableError as e:
        print_error(str(e))
        ctx.exit(EXIT_STACK_FAILURE)

    for entry in cleanup.scan.unknown_age:
        print_warning(f"Cannot determine age of lock {entry.lock_id}, leaving it in place")

    failures = 0
    outcomes = cleanup.outcomes
    for outcome in outcomes:
        if outcome.declined:
            print_info(f"Skipped {outcome.entry.lock_id}")
        elif outcome.result.success:
            print_success(f"Released {outcome.entry.lock_id}")
        elif outcome.result.reason == ReleaseReason.ALREADY_RELEASED:
            print_warning(f"{outcome.entry.lock_id} was already released")
        else:
            failures += 1
            print_error(f"Failed to release {outcome.entry.lock_id}: {outcome.result.detail}")

    if not outcomes:
        print_info("No stale locks found")
    if failures:
        ctx.exit(EXIT_STACK_FAILURE)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Write a default configuration to $STACKORCH_HOME."""
    home = get_stackorch_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        print_error(f"Config already exists at {cfg_path}. Use --force to overwrite.")
        raise SystemExit(EXIT_STACK_FAILURE)

    cfg_path.write_text(yaml.safe_dump(StackorchConfig().to_dict(), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# AWS_PROFILE=...\n# AWS_REGION=us-east-1\n")

    print_success(f"Initialized stackorch config at {cfg_path}")


if __name__ == "__main__":
    main()
