"""Rich terminal renderer for plans, session results and journal state.

Color scheme
------------
- green     : COMPLETED
- red       : FAILED
- yellow    : PENDING
- dim       : not yet journaled / reused from the journal
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deployforge.core.errors import DeploymentCancelled, ExecutionError
from deployforge.models.graph import ActionNode
from deployforge.models.journal import ActionStatus, DeploymentRecord
from deployforge.models.results import SessionResult


# ---------------------------------------------------------------------------
# Status -> Rich markup mapping
# ---------------------------------------------------------------------------

_STATUS_ICONS: dict[ActionStatus, str] = {
    ActionStatus.COMPLETED: "[green]COMPLETED[/green]",
    ActionStatus.FAILED: "[bold red]FAILED[/bold red]",
    ActionStatus.PENDING: "[yellow]PENDING[/yellow]",
}


def _describe(node: ActionNode) -> str:
    action = node.action
    if node.kind == "call":
        return f"{action.target}.{action.function}()"
    if node.kind == "reference_existing":
        return f"{node.contract_name} at {action.address}"
    return node.contract_name or ""


class DeploymentRenderer:
    """Renders deployment state as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def render_plan(self, ordered: list[ActionNode]) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Action", min_width=24)
        table.add_column("Kind", min_width=18)
        table.add_column("Target", min_width=20)
        table.add_column("Depends on", min_width=20)

        for position, node in enumerate(ordered, start=1):
            table.add_row(
                str(position),
                f"[bold]{node.action_id}[/bold]",
                node.kind,
                _describe(node),
                ", ".join(node.dependencies) or "[dim]-[/dim]",
            )

        modules = len({n.module_id for n in ordered})
        return Panel(
            table,
            title="[bold]Execution plan[/bold]",
            subtitle=f"{len(ordered)} actions in {modules} modules",
            border_style="blue",
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def render_result(self, result: SessionResult) -> Panel:
        """Per-module artifact -> address mapping of a finished session."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Module", style="cyan")
        table.add_column("Artifact")
        table.add_column("Address", style="green")

        for module_id, artifacts in result.module_artifacts().items():
            for local_id, address in artifacts.items():
                table.add_row(module_id, local_id, address)

        drifted = [o.action_id for o in result.outcomes if o.drifted]
        summary = (
            f"[bold]Session:[/bold] {result.session_id}  |  "
            f"[bold]Submitted:[/bold] {len(result.submitted)}  |  "
            f"[bold]Reused:[/bold] {len(result.reused)}"
        )
        parts = [table, Text(""), Text.from_markup(summary)]
        if drifted:
            parts.append(
                Text.from_markup(
                    f"[yellow]Inputs changed since completion (reused):[/yellow] "
                    f"{', '.join(drifted)}"
                )
            )
        return Panel(
            Group(*parts),
            title="[bold green]Deployment complete[/bold green]",
            border_style="green",
            padding=(1, 2),
        )

    def render_failure(self, error: ExecutionError | DeploymentCancelled) -> Panel:
        """Failed (or cancelled) action plus the actions already completed."""
        lines: list[str] = []
        if isinstance(error, ExecutionError):
            title = "[bold red]Deployment failed[/bold red]"
            lines += [
                f"[bold]Failed action:[/bold] {escape(error.action_id)}",
                f"[bold]Detail:[/bold]        {escape(error.detail)}",
            ]
        else:
            title = "[bold yellow]Deployment cancelled[/bold yellow]"
        lines.append(f"[bold]Session:[/bold]       {error.session_id}")
        lines.append("")
        lines.append(f"[bold]Completed ({len(error.completed)}):[/bold]")
        lines += [f"  [green]{aid}[/green]" for aid in error.completed] or ["  [dim]none[/dim]"]
        lines.append("")
        lines.append("[dim]Re-run with the same --session to resume.[/dim]")
        return Panel(
            "\n".join(lines),
            title=title,
            border_style="red" if isinstance(error, ExecutionError) else "yellow",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Journal state
    # ------------------------------------------------------------------

    def render_status(
        self,
        session_id: str,
        states: dict[str, DeploymentRecord],
        chain_valid: bool | None = None,
    ) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Action", min_width=24)
        table.add_column("Status", justify="center", min_width=12)
        table.add_column("Address")
        table.add_column("Tx")
        table.add_column("Detail")

        for action_id, record in states.items():
            table.add_row(
                action_id,
                _STATUS_ICONS[record.status],
                record.resolved_address or "[dim]-[/dim]",
                _short(record.tx_hash),
                escape(record.error_detail or ""),
            )

        completed = sum(1 for r in states.values() if r.is_completed)
        summary_parts = [
            f"[bold]Session:[/bold] {session_id}",
            f"[bold]Completed:[/bold] {completed}/{len(states)}",
        ]
        if chain_valid is not None:
            chain_status = "[green]valid[/green]" if chain_valid else "[bold red]BROKEN[/bold red]"
            summary_parts.append(f"[bold]Chain:[/bold] {chain_status}")

        return Panel(
            Group(table, Text(""), Text.from_markup("  |  ".join(summary_parts))),
            title="[bold]Deployment journal[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    def render_sessions(self, session_ids: list[str], counts: dict[str, tuple[int, int]]) -> Table:
        table = Table(title="Sessions", header_style="bold cyan")
        table.add_column("Session", style="cyan")
        table.add_column("Completed", justify="right")
        table.add_column("Actions", justify="right")
        for session_id in session_ids:
            completed, total = counts.get(session_id, (0, 0))
            table.add_row(session_id, str(completed), str(total))
        return table

    # ------------------------------------------------------------------
    # Print helpers
    # ------------------------------------------------------------------

    def print_plan(self, ordered: list[ActionNode]) -> None:
        self.console.print(self.render_plan(ordered))

    def print_result(self, result: SessionResult) -> None:
        self.console.print(self.render_result(result))

    def print_failure(self, error: ExecutionError | DeploymentCancelled) -> None:
        self.console.print(self.render_failure(error))

    def print_status(
        self,
        session_id: str,
        states: dict[str, DeploymentRecord],
        chain_valid: bool | None = None,
    ) -> None:
        self.console.print(self.render_status(session_id, states, chain_valid))


def _short(tx_hash: str | None) -> str:
    if not tx_hash:
        return "[dim]-[/dim]"
    return f"{tx_hash[:10]}…{tx_hash[-6:]}"
