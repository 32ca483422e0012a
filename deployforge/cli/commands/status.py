"""``deployforge status SESSION_ID`` and ``deployforge sessions``.

Read-only views over the state journal.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from deployforge.cli.settings import load_settings
from deployforge.core.errors import JournalIntegrityError
from deployforge.core.journal import StateJournal
from deployforge.monitor.renderer import DeploymentRenderer

console = Console()


def _open_journal(journal: str | None) -> StateJournal:
    db_path = Path(journal) if journal else load_settings().journal_path
    if not db_path.exists():
        console.print(f"[bold red]Journal not found:[/bold red] {db_path}")
        console.print("[dim]Run a deployment first with: deployforge deploy[/dim]")
        raise typer.Exit(code=1)
    return StateJournal(db_path)


def status_cmd(
    session_id: str = typer.Argument(
        ...,
        help="The deployment session to show.",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the journal hash chain before displaying.",
    ),
    journal: str = typer.Option(
        None,
        "--journal",
        "-j",
        help="Path to the journal SQLite database.",
    ),
) -> None:
    """Show the current journal state of every action in a session."""
    state_journal = _open_journal(journal)
    states = state_journal.current_states(session_id)
    if not states:
        console.print(f"[bold red]Session not found:[/bold red] {session_id}")
        known = state_journal.get_all_session_ids()
        if known:
            console.print("\n[bold]Available sessions:[/bold]")
            for sid in known[:10]:
                console.print(f"  [cyan]{sid}[/cyan]")
            if len(known) > 10:
                console.print(f"  [dim]... and {len(known) - 10} more[/dim]")
        raise typer.Exit(code=1)

    chain_valid = None
    if verify_chain:
        try:
            chain_valid = state_journal.verify_chain(session_id)
        except JournalIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {escape(str(exc))}")
            chain_valid = False

    DeploymentRenderer(console=console).print_status(session_id, states, chain_valid)
    if chain_valid is False:
        raise typer.Exit(code=1)


def sessions_cmd(
    journal: str = typer.Option(
        None,
        "--journal",
        "-j",
        help="Path to the journal SQLite database.",
    ),
) -> None:
    """List every session recorded in the journal, most recent first."""
    state_journal = _open_journal(journal)
    session_ids = state_journal.get_all_session_ids()
    if not session_ids:
        console.print("[dim]No sessions recorded.[/dim]")
        return

    counts = {}
    for sid in session_ids:
        states = state_journal.current_states(sid)
        counts[sid] = (sum(1 for r in states.values() if r.is_completed), len(states))
    console.print(DeploymentRenderer(console=console).render_sessions(session_ids, counts))
