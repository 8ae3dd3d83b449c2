"""
AUTOBOT CLI — The Gatekeeper

  1. autobot run <task-id>              (full QA lifecycle for a stored task)
  2. autobot gates --repo <path>        (ad-hoc gate run against a repo)

Plus utilities:
  - autobot config --repo <path>   (show the resolved gate config)
  - autobot init <path>            (write an example .autobot.json)
  - autobot results <task-id>      (show the last gate records of a task)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from autobot.audit_logger import AuditLogger
from autobot.config_loader import STACKS, ConfigResolver, EngineSettings, create_example_config
from autobot.controller import Controller, TaskNotFoundError
from autobot.event_bus import QA_UPDATE, TASK_UPDATE, EventBus, ProgressEvent
from autobot.identity import BANNER, __codename__, __tagline__, __version__
from autobot.ports import EventPlanResumer, LoggingReinvoker
from autobot.sequencer import GateNotFoundError
from autobot.state import GateResult
from autobot.store import InMemoryStore, JsonStore, qa_status

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".autobot" / ".env")

app = typer.Typer(
    name="autobot",
    help=f"{__codename__} — {__tagline__}\nQA gates for automated code changes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

STATUS_COLORS = {
    "passed": "green",
    "skipped": "yellow",
    "failed": "red",
    "running": "cyan",
    "waiting_approval": "green",
    "completed": "green",
    "qa_failed": "red",
}


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    task_id: str = typer.Argument(..., help="ID of the stored task to gate"),
    store_path: Optional[Path] = typer.Option(None, "--store", "-s", help="Path to the JSON store"),
    retry: bool = typer.Option(False, "--retry", help="Retry failed runs up to maxRetries"),
    audit_log: Optional[Path] = typer.Option(None, "--audit-log", help="Append progress events to a JSONL file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run the QA gate lifecycle for a task."""
    _print_banner()
    _configure_logging(verbose)

    settings = EngineSettings.from_env()
    store = JsonStore(store_path or Path(settings.store_path))

    bus = EventBus()
    bus.subscribe(_print_event)
    if audit_log:
        AuditLogger(str(audit_log), bus)

    controller = Controller(
        store=store,
        settings=settings,
        bus=bus,
        plan_resumer=EventPlanResumer(bus),
        reinvoker=LoggingReinvoker(),
    )

    try:
        result = controller.run_task_qa_gates(task_id, retry=retry)
    except TaskNotFoundError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    _print_results(result.results, title=f"QA Gates — {task_id}")

    task = store.get_task(task_id)
    color = STATUS_COLORS.get(task.status, "yellow")
    console.print(f"\n[bold {color}]Status: {task.status}[/]")
    if task.committed_sha:
        console.print(f"[dim]Committed {task.committed_sha}[/]")

    if not result.passed:
        raise typer.Exit(1)


@app.command()
def gates(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target repository"),
    gate: Optional[str] = typer.Option(None, "--gate", "-g", help="Run only this gate"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run a repository's gates without a task."""
    _print_banner()
    _configure_logging(verbose)

    repo = repo.resolve()
    if not repo.exists():
        console.print(f"[red]Repository not found: {repo}[/]")
        raise typer.Exit(1)

    controller = Controller(store=InMemoryStore(), settings=EngineSettings.from_env())

    try:
        result = controller.run_repository_gates(str(repo), gate_name=gate)
    except GateNotFoundError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    _print_results(result.results, title=f"QA Gates — {repo.name}")

    if result.passed:
        console.print("[bold green]✅ All gates passed[/]")
    else:
        console.print("[bold red]❌ Gates failed[/]")
        raise typer.Exit(1)


@app.command()
def config(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target repository"),
):
    """Show the resolved gate configuration for a repository."""
    settings = EngineSettings.from_env()
    resolver = ConfigResolver(settings.translator(), load_timeout=settings.config_timeout)
    cfg = resolver.resolve(str(repo.resolve()))

    table = Table(title="QA Gates", border_style="cyan")
    table.add_column("#", style="dim")
    table.add_column("Gate")
    table.add_column("Command")
    table.add_column("Timeout", style="dim")
    table.add_column("Enabled")
    table.add_column("Blocking")

    for gate in cfg.qa_gates:
        table.add_row(
            str(gate.order) if gate.order is not None else "—",
            gate.name,
            gate.command,
            f"{gate.timeout_ms / 1000:g}s",
            "[green]✓[/]" if gate.enabled else "[dim]✗[/]",
            "[red]yes[/]" if gate.fail_on_error else "[dim]no[/]",
        )

    console.print(table)
    console.print(f"Max retries: [bold]{cfg.max_retries}[/]")


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Path to repository"),
    stack: str = typer.Option("typescript", "--stack", help=f"One of: {', '.join(STACKS)}"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing .autobot.json"),
):
    """Write an example .autobot.json into a repository."""
    repo = (repo or Path.cwd()).resolve()
    target = repo / ".autobot.json"

    if target.exists() and not force:
        console.print(f"[yellow]{target} already exists (use --force to overwrite)[/]")
        raise typer.Exit(1)

    if stack not in STACKS:
        console.print(f"[yellow]Unknown stack '{stack}', using typescript[/]")

    path = create_example_config(repo, stack)
    console.print(f"[green]✅ Created {path}[/]")


@app.command()
def results(
    task_id: str = typer.Argument(..., help="Task ID"),
    store_path: Optional[Path] = typer.Option(None, "--store", "-s", help="Path to the JSON store"),
):
    """Show the gate records from a task's last QA run."""
    settings = EngineSettings.from_env()
    store = JsonStore(store_path or Path(settings.store_path))

    status = qa_status(store, task_id)
    if not status.has_run:
        console.print("[dim]No QA results for this task yet.[/]")
        return

    table = Table(title=f"QA Results — {task_id}", border_style="cyan")
    table.add_column("Gate")
    table.add_column("Status")
    table.add_column("Exit", style="dim")
    table.add_column("Duration", style="dim")
    table.add_column("Error")

    for record in status.gates:
        color = STATUS_COLORS.get(record.status, "dim")
        table.add_row(
            record.gate_name,
            f"[{color}]{record.status}[/]",
            "—" if record.exit_code is None else str(record.exit_code),
            f"{record.duration or 0}ms",
            escape((record.error or "")[:80]),
        )

    console.print(table)
    verdict = "[green]passed[/]" if status.passed else "[red]failed[/]"
    console.print(f"Overall: {verdict}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _print_results(results: list[GateResult], title: str) -> None:
    table = Table(title=title, border_style="bright_green")
    table.add_column("Gate")
    table.add_column("Status")
    table.add_column("Duration", style="dim")

    for r in results:
        color = STATUS_COLORS.get(r.status, "dim")
        table.add_row(r.gate_name, f"[{color}]{r.status}[/]", f"{r.duration}ms")

    console.print(table)

    for r in results:
        if r.status == "failed" and r.errors:
            console.print(Panel(
                escape("\n".join(r.errors[:20])),
                title=f"{r.gate_name} errors",
                border_style="red",
            ))


def _print_event(event: ProgressEvent) -> None:
    if event.event_type == TASK_UPDATE:
        console.print(f"[dim]→ task {event.task_id}: {event.status}[/]")
    elif event.event_type == QA_UPDATE:
        color = STATUS_COLORS.get(event.status or "", "dim")
        console.print(f"[dim]  gate[/] {event.gate_name}: [{color}]{event.status}[/]")
    else:
        console.print(f"[dim]→ {event.event_type} {event.plan_id or ''}[/]")


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg))}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg))}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
