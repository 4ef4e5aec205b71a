"""
Main CLI entry point for the Schema Pipeline.

This module provides the command-line interface using Click with Rich
formatting: running migrations, planning and executing rollbacks, and
inspecting schema state.
"""

import asyncio
import logging
import sys
from typing import Dict, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schema_pipeline import __version__
from schema_pipeline.cli.config_persistence import (
    apply_environment_overrides,
    load_config,
    save_config,
)
from schema_pipeline.core.exceptions import (
    ApprovalError,
    GateFailure,
    RollbackExecutionFailure,
    RollbackPlanningFailure,
    SchemaPipelineError,
)
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.results import RollbackResult
from schema_pipeline.models.rollback import ApprovalStatus, RollbackPlan
from schema_pipeline.models.strategy import Environment
from schema_pipeline.pipeline import Pipeline
from schema_pipeline.utils.logging import setup_logging

console = Console()
logger = logging.getLogger(__name__)

ENVIRONMENT_CHOICE = click.Choice([e.value for e in Environment], case_sensitive=False)


def parse_targets(ctx, param, values: Tuple[str, ...]) -> Dict[str, int]:
    """Parse repeated ``domain=version`` options into a target map."""
    targets: Dict[str, int] = {}
    for value in values:
        domain, sep, version = value.partition("=")
        if not sep or not domain.strip():
            raise click.BadParameter(f"Expected domain=version, got: {value}")
        try:
            targets[domain.strip()] = int(version)
        except ValueError:
            raise click.BadParameter(f"Version must be an integer, got: {version}")
    return targets


def _pipeline(ctx: click.Context) -> Pipeline:
    factory = ctx.obj.get('pipeline_factory', Pipeline)
    return factory(ctx.obj['config'], console=console)


def _fail(message: str):
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(1)


def display_plan(plan: RollbackPlan):
    """Display a rollback plan."""
    table = Table(title=f"Rollback Plan {plan.plan_id}")
    table.add_column("Domain", style="cyan")
    table.add_column("Current", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Risk")
    for domain, target in plan.target_versions.items():
        current = plan.current_versions.get(domain)
        table.add_row(
            domain,
            "?" if current is None else str(current),
            str(target),
            plan.domain_risks.get(domain, plan.risk_level).value,
        )
    console.print(table)
    console.print(Panel.fit(
        f"Environment: [bold]{plan.environment.value}[/bold]\n"
        f"Risk: [bold]{plan.risk_level.value}[/bold]\n"
        f"Approval: {plan.approval_status.value}\n"
        f"Estimated duration: {plan.estimated_duration} (approximate)\n"
        f"Reason: {plan.reason}",
        title="Plan Summary",
        border_style="blue"
    ))


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--log-file', type=click.Path(), help='Write logs to this file')
@click.option('--structured-logs', is_flag=True, help='Emit JSON structured logs')
@click.pass_context
def main(
    ctx: click.Context,
    version: bool,
    config_path: Optional[str],
    verbose: bool,
    log_file: Optional[str],
    structured_logs: bool
):
    """
    Schema Pipeline

    Gated, auditable schema migrations and dependency-aware rollbacks
    across development, staging and production.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    if version:
        console.print(f"Schema Pipeline version {__version__}")
        sys.exit(0)

    setup_logging(
        level="DEBUG" if verbose else "INFO",
        log_file=log_file,
        structured_logging=structured_logs,
    )

    if 'config' not in ctx.obj:
        try:
            config = load_config(config_path) if config_path else PipelineConfig()
            ctx.obj['config'] = apply_environment_overrides(config)
        except SchemaPipelineError as e:
            _fail(e.message)

    if ctx.invoked_subcommand is None:
        console.print("[yellow]Use --help to see available commands[/yellow]")


@main.command()
@click.argument('environment', type=ENVIRONMENT_CHOICE)
@click.option('--requested-by', '-r', help='Actor recorded in the audit trail')
@click.pass_context
def migrate(ctx: click.Context, environment: str, requested_by: Optional[str]):
    """Run the migration pipeline for ENVIRONMENT."""
    console.print(f"[green]Starting {environment} migration...[/green]")

    async def _run():
        async with _pipeline(ctx) as pipeline:
            orchestrator = pipeline.orchestrator(environment)
            try:
                result = await orchestrator.execute_migration(environment, requested_by=requested_by)
            except GateFailure as e:
                if e.result is not None:
                    orchestrator.display_result(e.result)
                raise
            orchestrator.display_result(result)
            return result

    try:
        result = asyncio.run(_run())
    except GateFailure as e:
        _fail(f"Migration aborted at {e.gate}: {e.message}")
    except SchemaPipelineError as e:
        _fail(e.message)

    if not result.success:
        sys.exit(1)


@main.command('plan-rollback')
@click.argument('environment', type=ENVIRONMENT_CHOICE)
@click.option('--target', '-t', 'targets', multiple=True, required=True, callback=parse_targets,
              help='Target version as domain=version (repeatable)')
@click.option('--reason', required=True, help='Why the rollback is needed')
@click.option('--requester', default='operator', help='Who is requesting the rollback')
@click.pass_context
def plan_rollback(ctx: click.Context, environment: str, targets: Dict[str, int], reason: str, requester: str):
    """Create and display a rollback plan without executing it."""

    async def _run():
        async with _pipeline(ctx) as pipeline:
            planner = pipeline.planner(environment)
            await planner.validate_rollback_safety(targets)
            return await planner.create_rollback_plan(targets, reason, requester)

    try:
        plan = asyncio.run(_run())
    except RollbackPlanningFailure as e:
        for dependency in e.dependencies:
            console.print(f"[yellow]⚠ {dependency.reason}[/yellow]")
        _fail(e.message)
    except SchemaPipelineError as e:
        _fail(e.message)

    display_plan(plan)


@main.command()
@click.argument('environment', type=ENVIRONMENT_CHOICE)
@click.option('--target', '-t', 'targets', multiple=True, required=True, callback=parse_targets,
              help='Target version as domain=version (repeatable)')
@click.option('--reason', required=True, help='Why the rollback is needed')
@click.option('--requester', default='operator', help='Who is requesting the rollback')
@click.pass_context
def rollback(ctx: click.Context, environment: str, targets: Dict[str, int], reason: str, requester: str):
    """Plan, approve and execute a rollback."""

    async def _run():
        async with _pipeline(ctx) as pipeline:
            planner = pipeline.planner(environment)
            await planner.validate_rollback_safety(targets)
            plan = await planner.create_rollback_plan(targets, reason, requester)
            display_plan(plan)

            if plan.approval_status == ApprovalStatus.PENDING:
                await pipeline.approval_gate(environment).approve_rollback_plan(plan)

            executor = pipeline.executor()
            try:
                result = await executor.execute_rollback(plan, executed_by=requester)
            except GateFailure as e:
                if isinstance(e.result, RollbackResult):
                    executor.display_result(e.result)
                raise
            executor.display_result(result)
            executor.raise_for_failure(result)
            return result

    try:
        asyncio.run(_run())
    except RollbackPlanningFailure as e:
        for dependency in e.dependencies:
            console.print(f"[yellow]⚠ {dependency.reason}[/yellow]")
        _fail(e.message)
    except ApprovalError as e:
        _fail(f"Rollback not approved: {e.message}")
    except GateFailure as e:
        _fail(f"Rollback aborted at {e.gate}: {e.message}")
    except RollbackExecutionFailure as e:
        _fail(e.message)
    except SchemaPipelineError as e:
        _fail(e.message)

    console.print("[green]✓ Rollback completed[/green]")


@main.command()
@click.argument('environment', type=ENVIRONMENT_CHOICE)
@click.pass_context
def status(ctx: click.Context, environment: str):
    """Show the schema version state of every domain."""

    async def _run():
        async with _pipeline(ctx) as pipeline:
            return await pipeline.orchestrator(environment).get_migration_status()

    try:
        statuses = asyncio.run(_run())
    except SchemaPipelineError as e:
        _fail(e.message)

    table = Table(title=f"Schema Status ({environment})")
    table.add_column("Domain", style="cyan")
    table.add_column("Current", justify="right")
    table.add_column("Latest", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Dirty")
    for domain_status in statuses:
        table.add_row(
            domain_status.domain,
            str(domain_status.current_version),
            str(domain_status.latest_version),
            str(domain_status.pending_migrations),
            "[red]yes[/red]" if domain_status.dirty else "no",
        )
    console.print(table)


@main.command()
@click.argument('environment', type=ENVIRONMENT_CHOICE)
@click.pass_context
def validate(ctx: click.Context, environment: str):
    """Run the environment health checks only."""

    async def _run():
        async with _pipeline(ctx) as pipeline:
            return await pipeline.orchestrator(environment).validate_environment(environment)

    try:
        report = asyncio.run(_run())
    except SchemaPipelineError as e:
        _fail(e.message)

    table = Table(title=f"Environment Health ({environment})")
    table.add_column("Dependency", style="cyan")
    table.add_column("Status")
    for name, healthy in report.dependencies.items():
        table.add_row(name, "[green]healthy[/green]" if healthy else "[red]unhealthy[/red]")
    console.print(table)
    for issue in report.issues:
        console.print(f"[yellow]⚠ {issue}[/yellow]")

    if not report.overall_healthy:
        _fail("Environment is not healthy")
    console.print("[green]✓ Environment is healthy[/green]")


@main.command()
@click.argument('domain')
@click.option('--limit', '-n', default=20, show_default=True, type=click.IntRange(min=1),
              help='Maximum number of records')
@click.pass_context
def history(ctx: click.Context, domain: str, limit: int):
    """Show rollback history for DOMAIN."""

    async def _run():
        async with _pipeline(ctx) as pipeline:
            return await pipeline.executor().get_rollback_history(domain, limit)

    try:
        records = asyncio.run(_run())
    except SchemaPipelineError as e:
        _fail(e.message)

    if not records:
        console.print(f"[yellow]No rollbacks recorded for {domain}[/yellow]")
        return

    table = Table(title=f"Rollback History ({domain})")
    table.add_column("Executed", style="dim")
    table.add_column("From", justify="right")
    table.add_column("To", justify="right")
    table.add_column("By")
    table.add_column("Result")
    table.add_column("Reason")
    for record in records:
        table.add_row(
            record.executed_at.isoformat(timespec='seconds'),
            str(record.from_version),
            str(record.to_version),
            record.executed_by,
            "[green]ok[/green]" if record.success else "[red]failed[/red]",
            record.reason,
        )
    console.print(table)


@main.command('init-config')
@click.argument('path', type=click.Path())
@click.pass_context
def init_config(ctx: click.Context, path: str):
    """Write the active configuration to PATH (.yaml, .yml or .toml)."""
    try:
        written = save_config(ctx.obj['config'], path)
    except SchemaPipelineError as e:
        _fail(e.message)
    console.print(f"[green]Configuration saved to: {written}[/green]")


if __name__ == '__main__':
    main()
