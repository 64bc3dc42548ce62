"""Command line interface for TypeFlow."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from typeflow.config import settings
from typeflow.executor.data import NodeStatus, WorkflowExecutionResult, items_to_dicts
from typeflow.executor.engine import WorkflowExecutionEngine
from typeflow.executor.errors import WorkflowValidationError
from typeflow.logs import setup_logging
from typeflow.queue.manager import QueueManager
from typeflow.queue.models import JobPayload, TriggerType
from typeflow.workflows.models import WorkflowDefinition
from typeflow.workflows.store import InMemoryWorkflowStore

app = typer.Typer(
    name="typeflow",
    help="TypeFlow - workflow execution engine",
    add_completion=False,
)

console = Console()

STATUS_STYLES = {
    NodeStatus.COMPLETED: "green",
    NodeStatus.FAILED: "red",
    NodeStatus.RUNNING: "yellow",
    NodeStatus.PENDING: "dim",
}


def _parse_json_option(value: Optional[str], option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"not valid JSON: {e}", param_hint=option)


def _load_workflow(path: Path) -> WorkflowDefinition:
    try:
        return WorkflowDefinition.parse(json.loads(path.read_text()))
    except json.JSONDecodeError as e:
        console.print(f"[red]{path} is not valid JSON: {e}[/red]")
        raise typer.Exit(1)
    except WorkflowValidationError as e:
        console.print(f"[red]{path}: {e.message}[/red]")
        for error in e.validation_errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)


def _build_store(workflow: WorkflowDefinition, workflows_dir: Optional[Path]) -> InMemoryWorkflowStore:
    store = InMemoryWorkflowStore()
    if workflows_dir is not None:
        for path in sorted(workflows_dir.glob("*.json")):
            candidate = _load_workflow(path)
            if candidate.id:
                store.add(candidate)
    if workflow.id:
        store.add(workflow)
    return store


def _print_result(workflow: WorkflowDefinition, result: WorkflowExecutionResult) -> None:
    table = Table(title=f"{workflow.name} ({result.execution_id})")
    table.add_column("Node", style="cyan")
    table.add_column("Status")
    table.add_column("Items", justify="right")
    table.add_column("Duration (ms)", justify="right", style="dim")
    table.add_column("Error", style="red")

    for node in workflow.nodes:
        node_result = result.node_results.get(node.id)
        if node_result is None:
            table.add_row(node.label, "[dim]not run[/dim]", "", "", "")
            continue
        style = STATUS_STYLES.get(node_result.status, "white")
        status = node_result.status.value + (" (skipped)" if node_result.skipped else "")
        duration = f"{node_result.duration_ms:.1f}" if node_result.duration_ms is not None else ""
        table.add_row(
            node.label,
            f"[{style}]{status}[/{style}]",
            str(len(node_result.output)),
            duration,
            node_result.error or "",
        )
    console.print(table)

    if result.success:
        console.print(f"[green]Run {result.status.value}[/green] in {result.execution_time_ms:.1f}ms")
        console.print_json(data=items_to_dicts(result.final_output))
    else:
        console.print(f"[red]Run {result.status.value}:[/red] {result.error or ''}")


async def _debug_run(
    engine: WorkflowExecutionEngine,
    workflow: WorkflowDefinition,
    trigger_data: Any,
    organization_id: Optional[str],
    breakpoints: List[str],
) -> WorkflowExecutionResult:
    handle = engine.start(
        workflow,
        trigger_data,
        organization_id=organization_id,
        breakpoints=set(breakpoints),
    )
    while not handle.done:
        node_id = await handle.wait_for_suspension()
        if node_id is None:
            continue
        node = workflow.get_node(node_id)
        console.print(f"[yellow]Paused before[/yellow] {node.label if node else node_id}")
        choice = await asyncio.to_thread(
            Prompt.ask,
            "resume, step or cancel",
            choices=["resume", "step", "cancel"],
            default="resume",
        )
        if choice == "step":
            handle.step()
        elif choice == "cancel":
            handle.cancel()
        else:
            handle.resume()
    return await handle.wait()


@app.command("run")
def run_workflow(
    workflow_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Workflow definition JSON"),
    input_json: Optional[str] = typer.Option(None, "--input", "-i", help="Trigger data as JSON"),
    organization_id: Optional[str] = typer.Option(None, "--org", help="Organization id"),
    breakpoints: List[str] = typer.Option([], "--breakpoint", "-b", help="Pause before this node id"),
    until: Optional[str] = typer.Option(None, "--until", help="Run only up to this node id"),
    workflows_dir: Optional[Path] = typer.Option(
        None, "--workflows-dir", file_okay=False, exists=True, help="Directory of sub-workflow definitions"
    ),
):
    """Run a workflow locally."""
    setup_logging()
    workflow = _load_workflow(workflow_file)
    trigger_data = _parse_json_option(input_json, "--input")
    engine = WorkflowExecutionEngine(store=_build_store(workflow, workflows_dir))

    try:
        if until:
            result = asyncio.run(
                engine.execute_until(workflow, until, trigger_data, organization_id=organization_id)
            )
        else:
            result = asyncio.run(
                _debug_run(engine, workflow, trigger_data, organization_id, breakpoints)
            )
    except WorkflowValidationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    _print_result(workflow, result)
    if not result.success:
        raise typer.Exit(1)


@app.command("enqueue")
def enqueue(
    workflow_id: str = typer.Argument(..., help="Stored workflow id"),
    organization_id: str = typer.Option(..., "--org", help="Organization id"),
    input_json: Optional[str] = typer.Option(None, "--input", "-i", help="Trigger data as JSON"),
):
    """Queue a stored workflow for a worker to run."""
    payload = JobPayload(
        workflow_id=workflow_id,
        organization_id=organization_id,
        trigger=TriggerType.MANUAL,
        input=_parse_json_option(input_json, "--input"),
    )

    async def _enqueue() -> str:
        manager = QueueManager()
        try:
            return await manager.enqueue_job(payload)
        finally:
            await manager.close()

    job_id = asyncio.run(_enqueue())
    console.print(f"[green]Queued job[/green] {job_id}")


@app.command("status")
def job_status(job_id: str = typer.Argument(..., help="Job id returned by enqueue")):
    """Show the state of a queued job."""

    async def _status():
        manager = QueueManager()
        try:
            return await manager.get_job_status(job_id)
        finally:
            await manager.close()

    status = asyncio.run(_status())
    table = Table(title=f"Job {job_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("State", status.state.value)
    table.add_row("Progress", f"{status.progress}%")
    table.add_row("Attempts", str(status.attempts_made))
    if status.failed_reason:
        table.add_row("Failed reason", status.failed_reason)
    if status.result is not None:
        table.add_row("Result", json.dumps(status.result, default=str))
    console.print(table)


@app.command("worker")
def start_worker():
    """Start a Celery worker."""
    # Importing the worker module builds the Celery app
    from typeflow.queue.worker import main as worker_main

    worker_main()


@app.command("config")
def show_config():
    """Show current configuration."""
    config_table = Table(title="TypeFlow Configuration")

    config_table.add_column("Setting", style="cyan")
    config_table.add_column("Value", style="green")

    config_items = [
        ("App Name", settings.app_name),
        ("Version", settings.app_version),
        ("Environment", settings.environment),
        ("Redis URL", settings.redis_url),
        ("Queue", settings.queue_name),
        ("Worker Concurrency", str(settings.worker_concurrency)),
        ("Job Attempts", str(settings.job_max_attempts)),
        ("Webhook Rate Limit", f"{settings.webhook_rate_limit}/{settings.webhook_rate_window}s"),
        ("Webhook Queue", str(settings.webhook_queue_enabled)),
    ]

    for setting, value in config_items:
        config_table.add_row(setting, value)

    console.print(config_table)


@app.command("version")
def version():
    """Show version information."""
    version_info = f"""
TypeFlow v{settings.app_version}

Environment: {settings.environment}
Python: {sys.version}
"""
    console.print(
        Panel(
            version_info.strip(),
            title="Version Information",
            border_style="green",
        )
    )


def main():
    """Main CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
