"""
Main CLI entry point for the Migration Runner.

This module provides a command-line interface using Click with Rich
formatting for running the migration task by hand, outside a provisioning
pipeline, and for inspecting a task.
"""

import asyncio
import json
import sys
from typing import Any, Dict, Optional, Tuple

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from migration_runner import __version__
from migration_runner.config import OrchestratorSettings, load_settings
from migration_runner.core.exceptions import ConfigurationError, SchedulerError
from migration_runner.models.outcome import OrchestrationState, Outcome
from migration_runner.models.request import LifecycleAction, MigrationRequest
from migration_runner.models.task import TaskHandle
from migration_runner.orchestrator.orchestrator import MigrationOrchestrator
from migration_runner.scheduler.ecs import EcsTaskScheduler
from migration_runner.utils.logging import setup_logging

console = Console()

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

STATE_STYLES = {
    OrchestrationState.SUBMITTED: "cyan",
    OrchestrationState.PENDING: "yellow",
    OrchestrationState.RUNNING: "blue",
    OrchestrationState.SUCCEEDED: "bold green",
    OrchestrationState.SKIPPED: "green",
}


def _split_ids(values: Tuple[str, ...]) -> Tuple[str, ...]:
    """Accept both repeated options and comma-separated lists."""
    ids = []
    for value in values:
        ids.extend(part.strip() for part in value.split(",") if part.strip())
    return tuple(ids)


def _resolve_settings(config: Optional[str], **overrides: Any) -> OrchestratorSettings:
    try:
        return load_settings(config).with_overrides(**overrides)
    except ConfigurationError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(EXIT_USAGE)


def _print_state(state: OrchestrationState, details: Dict[str, Any]):
    style = STATE_STYLES.get(state, "red")
    text = Text()
    text.append(f"● {state.value}", style=style)
    if details.get("remote_status"):
        text.append(f"  ({details['remote_status']})", style="dim")
    elif details.get("task_id"):
        text.append(f"  {details['task_id']}", style="dim")
    console.print(text)


def _print_outcome(outcome: Outcome):
    border = "green" if outcome.succeeded else "red"
    body = Text()
    body.append(f"{outcome.result.value}\n", style=f"bold {border}")
    body.append(f"{outcome.reason}\n\n")
    body.append(f"State:    {outcome.final_state.value}\n", style="dim")
    body.append(f"Task:     {outcome.task_id or '-'}\n", style="dim")
    body.append(f"Polls:    {outcome.poll_count}\n", style="dim")
    body.append(f"Elapsed:  {outcome.elapsed:.1f}s", style="dim")
    console.print(Panel(body, title="Migration Outcome", border_style=border, padding=(1, 2)))


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def main(ctx: click.Context, version: bool, verbose: bool):
    """
    Migration Task Runner

    Runs a one-shot database migration as a container task and waits for
    it to succeed or fail.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    if version:
        console.print(f"Migration Runner version {__version__}")
        sys.exit(0)

    if verbose:
        setup_logging(level="DEBUG")

    if ctx.invoked_subcommand is None:
        console.print("[bold blue]Migration Task Runner[/bold blue]")
        console.print("\n[yellow]Use --help to see available commands[/yellow]")
        console.print("  [cyan]migration-runner run[/cyan]    - Run the migration task and wait for it")
        console.print("  [cyan]migration-runner status[/cyan] - Show the state of a task")


@main.command()
@click.option('--cluster', required=True, help='Cluster name or ARN')
@click.option('--task-definition', required=True, help='Task definition family, family:revision or ARN')
@click.option('--subnet', 'subnets', multiple=True, required=True,
              help='Subnet id (repeat or comma-separate)')
@click.option('--security-group', 'security_groups', multiple=True,
              help='Security group id (repeat or comma-separate)')
@click.option('--action', type=click.Choice([a.value for a in LifecycleAction]),
              default=LifecycleAction.CREATE.value, show_default=True,
              help='Lifecycle action to simulate')
@click.option('--token', help='Idempotency token forwarded to the scheduler')
@click.option('--poll-interval', type=float, help='Seconds between status polls')
@click.option('--timeout', type=float, help='Overall deadline in seconds')
@click.option('--region', help='AWS region')
@click.option('--profile', help='AWS profile')
@click.option('--config', '-c', type=click.Path(exists=True), help='YAML settings file')
@click.option('--json', 'as_json', is_flag=True, help='Print the outcome as JSON')
@click.pass_context
def run(ctx: click.Context, cluster: str, task_definition: str, subnets: Tuple[str, ...],
        security_groups: Tuple[str, ...], action: str, token: Optional[str],
        poll_interval: Optional[float], timeout: Optional[float], region: Optional[str],
        profile: Optional[str], config: Optional[str], as_json: bool):
    """Run the migration task and wait for its outcome."""
    settings = _resolve_settings(
        config, poll_interval=poll_interval, timeout=timeout, region=region, profile=profile
    )

    try:
        request = MigrationRequest(
            cluster=cluster,
            task_definition=task_definition,
            subnets=_split_ids(subnets),
            security_groups=_split_ids(security_groups),
            action=LifecycleAction(action),
            idempotency_token=token,
        )
    except PydanticValidationError as e:
        console.print(f"[red]Invalid request:[/red] {escape(str(e))}")
        sys.exit(EXIT_USAGE)

    orchestrator = MigrationOrchestrator(EcsTaskScheduler(settings), settings)
    if not as_json:
        console.print(
            f"[green]Running {request.task_definition} in {request.cluster}[/green] "
            f"[dim](poll every {settings.poll_interval:g}s, timeout {settings.timeout:g}s)[/dim]"
        )
        orchestrator.add_state_callback(_print_state)

    outcome = asyncio.run(orchestrator.run(request))

    if as_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2))
    else:
        _print_outcome(outcome)

    sys.exit(EXIT_SUCCESS if outcome.succeeded else EXIT_FAILURE)


@main.command()
@click.argument('task_id')
@click.option('--cluster', required=True, help='Cluster name or ARN')
@click.option('--region', help='AWS region')
@click.option('--profile', help='AWS profile')
@click.option('--container-name', help='Container whose exit code counts')
def status(task_id: str, cluster: str, region: Optional[str], profile: Optional[str],
           container_name: Optional[str]):
    """Show the current state of a migration task."""
    settings = _resolve_settings(
        None, region=region, profile=profile, container_name=container_name
    )
    scheduler = EcsTaskScheduler(settings)

    try:
        snapshot = asyncio.run(
            scheduler.describe_task(TaskHandle(task_id=task_id, cluster=cluster))
        )
    except SchedulerError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(EXIT_FAILURE)

    table = Table(title=f"Task {task_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", snapshot.status.value)
    table.add_row("Scheduler status", snapshot.remote_status or "-")
    table.add_row("Exit code", "-" if snapshot.exit_code is None else str(snapshot.exit_code))
    table.add_row("Stop", snapshot.describe_stop() or "-")
    table.add_row("Terminal", "yes" if snapshot.status.is_terminal else "no")
    console.print(table)


if __name__ == '__main__':
    main()
