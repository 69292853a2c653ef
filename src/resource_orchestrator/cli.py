"""Typer CLI for the resource lifecycle orchestrator."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from resource_orchestrator.config.loader import load_plan_config, load_platform_config
from resource_orchestrator.config.models import (
    LoggingConfig,
    PlanConfig,
    PlatformConfig,
    ProviderMode,
)
from resource_orchestrator.config.templates import (
    DEFAULT_TEMPLATE,
    available_templates,
    build_plan_config,
)
from resource_orchestrator.observability.logging import configure_logging
from resource_orchestrator.orchestrator.engine import RunReport
from resource_orchestrator.orchestrator.events import (
    EventType,
    LoggingSink,
    MultiSink,
    OrchestratorEvent,
    ReportingSink,
)
from resource_orchestrator.orchestrator.models import NodeState, Plan
from resource_orchestrator.runner import PlanRunner

console = Console()
app = typer.Typer(name="rlo", help="Resource lifecycle orchestrator CLI")

_STATE_STYLE = {
    NodeState.PENDING: "dim",
    NodeState.CREATED: "yellow",
    NodeState.FAILED: "red",
    NodeState.DELETED: "green",
}


class ConsoleSink:
    """Renders orchestration events as rich progress lines."""

    def __init__(self, out: Console) -> None:
        self._out = out

    def emit(self, event: OrchestratorEvent) -> None:
        kind = escape(str(event.kind))
        what = f"{kind} [bold]{escape(str(event.resource_name))}[/bold]"
        error = f": {escape(str(event.error))}" if event.error is not None else ""
        match event.type:
            case EventType.NODE_CREATING:
                self._out.print(f"[dim]Creating {what}...[/dim]")
            case EventType.NODE_CREATED:
                self._out.print(f"[green]Created[/green] {what}")
            case EventType.NODE_CREATE_FAILED:
                self._out.print(f"[red]Create failed[/red] {what}{error}")
            case EventType.NODE_UPDATED:
                fields = ", ".join(event.detail.get("fields", []))
                self._out.print(f"[green]Updated[/green] {what} ({fields})")
            case EventType.NODE_UPDATE_FAILED:
                self._out.print(f"[red]Update failed[/red] {what}{error}")
            case EventType.NODE_DELETING:
                self._out.print(f"[dim]Deleting {what}...[/dim]")
            case EventType.NODE_DELETED:
                self._out.print(f"[green]Deleted[/green] {what}")
            case EventType.NODE_ALREADY_DELETED:
                self._out.print(f"[yellow]Already gone[/yellow] {what}")
            case EventType.NODE_DELETE_FAILED:
                self._out.print(f"[red]Delete failed[/red] {what}{error}")
            case EventType.NODE_DELETE_CASCADED:
                via = event.detail.get("via")
                self._out.print(f"[green]Deleted[/green] {what} (with {via})")
            case EventType.NODES_LISTED:
                count = event.detail.get("count", 0)
                scope = f" in {escape(event.node)}" if event.node else ""
                self._out.print(f"Found {count} {kind}(s){scope}")
            case EventType.NOTHING_TO_CLEAN_UP:
                self._out.print(
                    "[dim]Did not create any resources. No clean up is necessary[/dim]"
                )
            case EventType.RUN_CANCELLED:
                self._out.print("[yellow]Run cancelled, cleaning up[/yellow]")


def _load_platform(
    platform_config: str | None, provider: ProviderMode | None
) -> PlatformConfig:
    if platform_config is not None and not Path(platform_config).exists():
        console.print(f"[red]Config file not found: {platform_config}[/red]")
        raise typer.Exit(1)
    try:
        platform = load_platform_config(platform_config)
    except ValueError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1) from exc
    if provider is not None:
        platform = platform.model_copy(
            update={"provider": platform.provider.model_copy(update={"mode": provider})}
        )
    return platform


def _load_plan(plan_path: str | None, template: str) -> PlanConfig:
    try:
        if plan_path is None:
            return build_plan_config(template=template)
        path = Path(plan_path)
        if not path.exists():
            console.print(f"[red]Plan file not found: {path}[/red]")
            raise typer.Exit(1)
        return load_plan_config(path)
    except (ValueError, TypeError, FileNotFoundError) as exc:
        console.print(f"[red]Invalid plan:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def _print_summary(report: RunReport, plan: Plan | None) -> None:
    table = Table(title=f"Run summary: {report.plan_id}")
    table.add_column("Node", style="cyan")
    table.add_column("Kind")
    table.add_column("Resource")
    table.add_column("Final state")

    for name, state in report.nodes.items():
        node = plan.get(name) if plan is not None else None
        style = _STATE_STYLE[state]
        table.add_row(
            name,
            node.kind if node else "",
            escape(node.resource_name) if node else "",
            f"[{style}]{state.value}[/{style}]",
        )
    console.print(table)

    for key, names in report.listings.items():
        console.print(f"  {key}: {len(names)} ({escape(', '.join(names))})")
    for failure in report.step_failures:
        target = failure.step.node or failure.step.kind
        console.print(
            f"[red]Step failed:[/red] {failure.step.action.value} {target}: "
            f"{escape(str(failure.error))}"
        )
    if report.error is not None:
        console.print(f"[red]Run aborted:[/red] {escape(str(report.error))}")
    cleanup = report.cleanup
    if cleanup is not None:
        for name, exc in cleanup.errors.items():
            console.print(f"[red]Cleanup error[/red] {name}: {escape(str(exc))}")
        if cleanup.leaked:
            console.print(f"[red]Leaked:[/red] {', '.join(cleanup.leaked)}")

    if report.succeeded:
        console.print("[green]Run succeeded[/green]")
    else:
        console.print("[red]Run failed[/red]")


@app.command()
def run(
    plan_path: str | None = typer.Argument(
        None, help="Path to plan YAML (default: built-in template)"
    ),
    template: str = typer.Option(
        DEFAULT_TEMPLATE, "--template", help="Built-in template when no plan given"
    ),
    platform_config: str | None = typer.Option(
        None, "--platform-config", help="Platform YAML"
    ),
    provider: ProviderMode | None = typer.Option(
        None, "--provider", help="Override the configured provider"
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Provision a plan, run its steps, and tear everything down."""
    platform = _load_platform(platform_config, provider)
    configure_logging(
        LoggingConfig(
            level="debug" if verbose else platform.logging.level,
            json_output=json_logs or platform.logging.json_output,
        )
    )
    plan_config = _load_plan(plan_path, template)

    sink: ReportingSink = ConsoleSink(console)
    if json_logs or verbose:
        sink = MultiSink(sink, LoggingSink())

    console.print(
        f"[yellow]Running plan:[/yellow] {plan_config.plan_id} "
        f"({len(plan_config.nodes)} nodes, {len(plan_config.steps)} steps, "
        f"provider={platform.provider.mode.value})"
    )
    runner = PlanRunner(plan_config, platform, sink=sink)
    report = runner.run()
    _print_summary(report, runner.plan)
    raise typer.Exit(report.exit_code)


@app.command()
def validate(
    plan_path: str = typer.Argument(..., help="Path to plan YAML"),
    platform_config: str | None = typer.Option(
        None, "--platform-config", help="Platform YAML"
    ),
) -> None:
    """Validate a plan file (and optionally a platform config)."""
    plan_config = _load_plan(plan_path, DEFAULT_TEMPLATE)
    platform = _load_platform(platform_config, None)
    console.print(f"[green]Valid[/green] plan_id={plan_config.plan_id}")
    console.print(f"  nodes:    {len(plan_config.nodes)}")
    console.print(f"  steps:    {len(plan_config.steps)}")
    console.print(f"  provider: {platform.provider.mode.value}")
    cascade = platform.cleanup.cascade_kinds
    console.print(f"  cascade:  {', '.join(cascade) if cascade else '(none)'}")


@app.command()
def plan(
    plan_path: str | None = typer.Argument(
        None, help="Path to plan YAML (default: built-in template)"
    ),
    template: str = typer.Option(
        DEFAULT_TEMPLATE, "--template", help="Built-in template when no plan given"
    ),
) -> None:
    """Show the create and destroy order of a plan."""
    plan_config = _load_plan(plan_path, template)
    resource_plan, steps = Plan.from_config(plan_config)

    table = Table(title=f"Plan: {resource_plan.plan_id}")
    table.add_column("#", justify="right")
    table.add_column("Create", style="cyan")
    table.add_column("Kind")
    table.add_column("Parent")
    table.add_column("Destroy", style="magenta")

    create = resource_plan.create_order()
    destroy = resource_plan.destroy_order()
    for i, (node, doomed) in enumerate(zip(create, destroy, strict=True), start=1):
        table.add_row(
            str(i), node.name, node.kind, node.parent_name or "-", doomed.name
        )
    console.print(table)

    if steps:
        console.print("[bold]Steps[/bold]")
        for i, step in enumerate(steps, start=1):
            target = step.node or step.kind
            extra = f" {escape(str(step.patch))}" if step.patch else ""
            console.print(f"  {i}. {step.action.value} {target}{extra}")


@app.command()
def templates() -> None:
    """List built-in plan templates."""
    for name in available_templates():
        marker = " (default)" if name == DEFAULT_TEMPLATE else ""
        console.print(f"{name}{marker}")
