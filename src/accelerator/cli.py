import asyncio
import logging

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from accelerator.models.schemas import TrackingParams

app = typer.Typer(name="accelerator", help="Autonomous GitHub issue tracking agent.")
console = Console()


def _setup_logging(verbose: bool, default: int = logging.WARNING) -> None:
    level = logging.DEBUG if verbose else default
    logging.basicConfig(level=level, format="%(name)s | %(levelname)s | %(message)s")


def _params(repo: str, issue: int) -> TrackingParams:
    owner, sep, name = repo.partition("/")
    if not sep or not owner or not name:
        console.print(f"[red]Expected --repo as owner/repo, got '{repo}'.[/red]")
        raise typer.Exit(1)
    try:
        return TrackingParams(owner=owner, repo=name, issue_number=issue)
    except ValidationError:
        console.print(f"[red]Invalid repository name '{repo}'.[/red]")
        raise typer.Exit(1)


def _store():
    from accelerator.config import state_path
    from accelerator.workflows.store import WorkflowStore

    return WorkflowStore(state_path())


@app.command()
def track(
    repo: str = typer.Option(..., help="Repository full name (owner/repo)"),
    issue: int = typer.Option(..., help="Issue number to track"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Track an issue in the foreground until it is stopped or the check limit is reached."""
    from functools import partial

    from accelerator.agents.console_callback import ConsoleCallback
    from accelerator.config import settings
    from accelerator.services.github_service import GitHubService
    from accelerator.workflows.issue_tracking import build_workflow
    from accelerator.workflows.runner import WorkflowRunner

    _setup_logging(verbose, default=logging.INFO)
    params = _params(repo, issue)

    issue_obj = GitHubService().get_issue(repo, issue)
    console.print(f"[bold]Issue #{issue}: {issue_obj.title}[/bold]")
    if issue_obj.state != "open":
        console.print(f"[red]Issue #{issue} is {issue_obj.state}, nothing to track.[/red]")
        raise typer.Exit(1)
    if settings.managed_label not in issue_obj.labels:
        console.print(f"[yellow]Issue has no '{settings.managed_label}' label; tracking anyway.[/yellow]")

    store = _store()
    runner = WorkflowRunner(
        store,
        workflow_factory=partial(build_workflow, callback=ConsoleCallback(console)),
    )

    async def _main() -> str:
        instance_id, created = await runner.start(params)
        if not created:
            console.print(f"[dim]Resuming {instance_id} from its journal[/dim]")
        await runner.wait(instance_id)
        return instance_id

    try:
        instance_id = asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted; run the same command again to resume.[/yellow]")
        raise typer.Exit(130)

    record = store.load(instance_id)
    if record is not None:
        console.print(f"[green]{instance_id}: {record.status.value}[/green]")
        if record.error:
            console.print(f"[red]{record.error}[/red]")


@app.command()
def stop(
    repo: str = typer.Option(..., help="Repository full name (owner/repo)"),
    issue: int = typer.Option(..., help="Issue number to stop tracking"),
    reason: str = typer.Option("unlabeled", help="Stop reason: closed or unlabeled"),
) -> None:
    """Send a stop signal to a running tracking workflow."""
    from accelerator.workflows.runner import WorkflowRunner

    if reason not in ("closed", "unlabeled"):
        console.print("[red]--reason must be 'closed' or 'unlabeled'.[/red]")
        raise typer.Exit(1)
    params = _params(repo, issue)
    if WorkflowRunner(_store()).stop(params, reason):
        console.print(f"[green]Stop signal sent to {params.instance_id}[/green]")
    else:
        console.print(f"[yellow]No active workflow found for {params.instance_id}[/yellow]")


@app.command()
def status() -> None:
    """List tracked issues and where their workflows stand."""
    records = _store().list_instances()
    if not records:
        console.print("[dim]No workflow instances.[/dim]")
        return

    table = Table(title="Workflow instances", border_style="dim")
    table.add_column("Instance", style="bold cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Last step", style="dim")
    table.add_column("Updated", style="dim")
    for record in records:
        last_step = next(reversed(record.steps), "") if record.steps else ""
        table.add_row(
            record.id,
            record.status.value,
            str(len(record.steps)),
            last_step,
            record.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Start the GitHub webhook server."""
    import uvicorn

    _setup_logging(verbose, default=logging.INFO)

    from accelerator.server import app as fastapi_app

    uvicorn.run(fastapi_app, host=host, port=port)


if __name__ == "__main__":
    app()
