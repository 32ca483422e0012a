"""``deployforge deploy DESCRIPTION`` — run (or resume) a deployment session.

Builds and schedules the action graph, runs preflight checks, then executes
each action against the target network. Re-using ``--session`` resumes a
session: completed actions are reused from the journal and only the
remaining ones are submitted.
"""

from __future__ import annotations

import signal
import threading
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from deployforge.cli.settings import (
    EXIT_CANCELLED,
    EXIT_EXECUTION_FAILED,
    EXIT_INVALID_INPUT,
    load_settings,
)
from deployforge.core.description import load_description, load_inputs
from deployforge.core.errors import (
    BuildError,
    ConfigurationError,
    DeploymentCancelled,
    ExecutionError,
    JournalError,
    NetworkError,
)
from deployforge.core.orchestrator import DeploymentOrchestrator, new_session_id
from deployforge.monitor.renderer import DeploymentRenderer

console = Console()


def deploy_cmd(
    description: Path = typer.Argument(
        ...,
        help="Deployment description (JSON).",
    ),
    session: str = typer.Option(
        None,
        "--session",
        "-s",
        help="Session id. Re-use it to resume; a new one is generated if omitted.",
    ),
    inputs: Path = typer.Option(
        None,
        "--inputs",
        "-i",
        help="External address inputs (JSON).",
    ),
    network: str = typer.Option(
        None,
        "--network",
        "-n",
        help="Named network (hardhat, sepolia, bsctestnet, ...).",
    ),
    simulate: bool = typer.Option(
        False,
        "--simulate",
        help="Run against an in-memory simulated chain.",
    ),
    confirmations: int = typer.Option(
        None,
        "--confirmations",
        "-c",
        min=1,
        help="Blocks (including inclusion) to wait for before an action counts as complete.",
    ),
    journal: str = typer.Option(
        None,
        "--journal",
        "-j",
        help="Path to the journal SQLite database.",
    ),
    artifacts: str = typer.Option(
        None,
        "--artifacts",
        "-a",
        help="Path to the Hardhat artifacts directory.",
    ),
) -> None:
    """Deploy every root module of DESCRIPTION."""
    config = load_settings(
        network=network,
        confirmations=confirmations,
        journal_path=journal,
        artifacts_path=artifacts,
    )
    renderer = DeploymentRenderer(console=console)
    session_id = session or new_session_id()

    try:
        orchestrator = DeploymentOrchestrator.from_config(
            config,
            load_description(description),
            load_inputs(inputs),
            simulate=simulate,
        )
    except ConfigurationError as exc:
        console.print(Panel(escape(str(exc)), title="[bold red]Configuration error[/bold red]", border_style="red"))
        raise typer.Exit(code=EXIT_INVALID_INPUT)

    cancel = threading.Event()

    def _on_interrupt(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        console.print(
            "[yellow]Cancelling after the current action completes "
            "(Ctrl+C again to abort immediately).[/yellow]"
        )

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    console.print(f"[bold]Session:[/bold] {session_id}  [dim]({'simulated' if simulate else config.network})[/dim]")
    try:
        result = orchestrator.deploy(session_id, cancel=cancel)
    except (BuildError, ConfigurationError) as exc:
        console.print(Panel(escape(str(exc)), title="[bold red]Nothing was submitted[/bold red]", border_style="red"))
        raise typer.Exit(code=EXIT_INVALID_INPUT)
    except ExecutionError as exc:
        renderer.print_failure(exc)
        raise typer.Exit(code=EXIT_EXECUTION_FAILED)
    except (JournalError, NetworkError) as exc:
        console.print(Panel(escape(str(exc)), title="[bold red]Deployment aborted[/bold red]", border_style="red"))
        raise typer.Exit(code=EXIT_EXECUTION_FAILED)
    except DeploymentCancelled as exc:
        renderer.print_failure(exc)
        raise typer.Exit(code=EXIT_CANCELLED)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    renderer.print_result(result)
