"""Command-line interface for Typeflow - run workflow definitions locally."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from typeflow import __version__
from typeflow.config import settings
from typeflow.logger import setup_global_logger

console = Console()
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Log level (default: LOG_LEVEL setting)")
def main(log_level: Optional[str]):
    """
    Typeflow - workflow execution engine.

    Run workflow definitions (JSON) from the command line, fully, up to a
    node, or step by step with breakpoints.
    """
    setup_global_logger(log_level or settings.LOG_LEVEL)


def load_workflow_file(path: Path):
    from typeflow.workflows.engine.definitions import WorkflowDefinition

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    data.setdefault("id", path.stem)
    data.setdefault("organizationId", "local")
    return WorkflowDefinition.model_validate(data)


def build_engine(workflow, fan_in: Optional[str] = None, with_credentials: bool = False):
    from typeflow.packages.manager import PackageManager
    from typeflow.workflows.engine import WorkflowEngine
    from typeflow.workflows.repository import InMemoryWorkflowRepository

    repository = InMemoryWorkflowRepository()
    repository.add_workflow(workflow)
    credential_service = None
    if with_credentials:
        from typeflow.credentials import CredentialService

        credential_service = CredentialService()
    return WorkflowEngine(
        repository,
        credential_service=credential_service,
        package_manager=PackageManager(),
        fan_in_mode=fan_in,
    )


def print_results(result) -> None:
    table = Table(title="Node Results")
    table.add_column("Node", style="cyan")
    table.add_column("Status")
    table.add_column("Items", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="red")

    for node_id, node_result in result.node_results.items():
        status = node_result.status.value
        colour = "green" if node_result.completed else "red"
        table.add_row(
            node_result.node_label or node_id,
            f"[{colour}]{status}[/{colour}]",
            str(len(node_result.output or [])),
            f"{node_result.duration:.1f}ms",
            node_result.error or "",
        )
    console.print(table)

    if result.final_output is not None:
        output = [item.to_dict() for item in result.final_output]
        console.print(Panel(json.dumps(output, indent=2, default=str), title="Final output"))
    if result.error:
        console.print(f"[bold red]✗ {result.error}[/bold red]")


def parse_trigger_data(raw: Optional[str]):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"trigger data is not valid JSON: {e}") from e


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--until", "until_node", default=None, help="Run only up to this node id")
@click.option("--data", "trigger_data", default=None, help="Trigger data as JSON")
@click.option("--fan-in", type=click.Choice(["gated", "eager"]), default=None, help="Fan-in mode for full runs")
@click.option("--credentials", is_flag=True, help="Load credentials from the database")
def run(workflow_file: Path, until_node: Optional[str], trigger_data: Optional[str], fan_in: Optional[str], credentials: bool):
    """Execute a workflow JSON file."""
    workflow = load_workflow_file(workflow_file)
    engine = build_engine(workflow, fan_in, credentials)
    data = parse_trigger_data(trigger_data)

    async def _run():
        try:
            if until_node:
                return await engine.execute_until_node(workflow.id, workflow.organization_id, until_node, data)
            return await engine.execute_workflow(workflow.id, workflow.organization_id, data)
        finally:
            await engine.aclose()

    console.print(f"[cyan]▶ Running workflow {workflow.name or workflow.id}[/cyan]")
    result = asyncio.run(_run())
    print_results(result)
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--breakpoint", "-b", "breakpoints", multiple=True, help="Node id to pause before (repeatable)")
@click.option("--data", "trigger_data", default=None, help="Trigger data as JSON")
@click.option("--step", is_flag=True, help="Pause after every node")
def debug(workflow_file: Path, breakpoints, trigger_data: Optional[str], step: bool):
    """Debug a workflow JSON file, pausing at breakpoints."""
    from typeflow.workflows.engine.debug import DebugExecutionOptions, DebugSession

    workflow = load_workflow_file(workflow_file)
    engine = build_engine(workflow)
    data = parse_trigger_data(trigger_data)
    session = DebugSession(
        organization_id=workflow.organization_id,
        workflow_id=workflow.id,
        breakpoints=list(breakpoints),
        trigger_data=data,
    )

    async def _debug():
        try:
            options = DebugExecutionOptions(breakpoints=set(session.breakpoints), capture_stack_traces=True)
            result = await engine.execute_with_debug(workflow.id, workflow.organization_id, options, data)
            session.apply_result(result)
            while result.is_paused:
                console.print(
                    f"[yellow]⏸ Paused at {result.paused_at_node_id}[/yellow] "
                    f"(next: {', '.join(result.next_node_ids) or '-'})"
                )
                if not click.confirm("Continue?", default=True):
                    session.terminate()
                    break
                if step:
                    node_id = session.next_step_node()
                    result = await engine.execute_one_node(
                        workflow.id, workflow.organization_id, node_id, session.previous_state(), data
                    )
                    session.apply_result(result, stepped_node_id=node_id)
                else:
                    options = DebugExecutionOptions(
                        breakpoints=set(session.breakpoints),
                        capture_stack_traces=True,
                        previous_state=session.previous_state(),
                    )
                    result = await engine.execute_with_debug(workflow.id, workflow.organization_id, options, data)
                    session.apply_result(result)
            return result
        finally:
            await engine.aclose()

    result = asyncio.run(_debug())
    print_results(result)
    for frame in result.call_stack:
        if frame.source_location:
            loc = frame.source_location
            console.print(f"[red]{frame.node_label}: line {loc.line}, col {loc.column}: {loc.code}[/red]")
    console.print(f"Session {session.id}: [bold]{session.status.value}[/bold]")


@main.command("init-db")
def init_db_command():
    """Create the database tables."""
    from typeflow.database import init_db

    init_db()
    console.print("[green]✓ Database is up to date.[/green]")


@main.command()
@click.option("--dir", "packages_dir", type=click.Path(file_okay=False, path_type=Path), default=None)
def nodes(packages_dir: Optional[Path]):
    """List external node packages."""
    from typeflow.workflows.engine.nodes.loader import NodePackageLoader

    directory = packages_dir or settings.NODE_PACKAGES_DIR
    if directory is None:
        console.print("[yellow]⚠ No node packages directory configured (NODE_PACKAGES_DIR)[/yellow]")
        return

    table = Table(title="External Nodes")
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Style")
    for node in NodePackageLoader(directory).list_nodes():
        table.add_row(node["name"], node["displayName"], node["version"], node["style"])
    console.print(table)


if __name__ == "__main__":
    main()
