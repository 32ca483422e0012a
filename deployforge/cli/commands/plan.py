"""``deployforge plan DESCRIPTION`` — show the execution order without deploying."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from deployforge.cli.settings import EXIT_INVALID_INPUT
from deployforge.core.deduplicator import ExpansionCache
from deployforge.core.description import load_description
from deployforge.core.errors import BuildError, ConfigurationError
from deployforge.core.graph_builder import ActionGraphBuilder
from deployforge.core.scheduler import TopologicalScheduler
from deployforge.monitor.renderer import DeploymentRenderer

console = Console()


def plan_cmd(
    description: Path = typer.Argument(
        ...,
        help="Deployment description (JSON).",
    ),
) -> None:
    """Build and schedule the action graph, then print it.

    Pure: no artifacts, keys or network are needed.
    """
    try:
        desc = load_description(description)
        graph = ActionGraphBuilder(desc.registry()).build(desc.root_ids, ExpansionCache())
        ordered = TopologicalScheduler().schedule(graph)
    except (BuildError, ConfigurationError) as exc:
        console.print(Panel(escape(str(exc)), title="[bold red]Invalid description[/bold red]", border_style="red"))
        raise typer.Exit(code=EXIT_INVALID_INPUT)

    DeploymentRenderer(console=console).print_plan(ordered)
