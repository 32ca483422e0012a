"""Main Typer application — imports and registers all CLI commands.

Entry point: ``deployforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from deployforge import __version__
from deployforge.cli.commands.deploy import deploy_cmd
from deployforge.cli.commands.plan import plan_cmd
from deployforge.cli.commands.status import sessions_cmd, status_cmd
from deployforge.cli.settings import load_settings

app = typer.Typer(
    name="deployforge",
    help="deployforge: declarative, resumable deployment of interdependent contracts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (defaults to DEPLOYFORGE_LOG_LEVEL or INFO).",
    ),
) -> None:
    level = (log_level or load_settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False, markup=False)],
        force=True,
    )


# Register subcommands
app.command(name="deploy", help="Run or resume a deployment session.")(deploy_cmd)
app.command(name="plan", help="Show the execution order without deploying.")(plan_cmd)
app.command(name="status", help="Show journal state for a session.")(status_cmd)
app.command(name="sessions", help="List sessions recorded in the journal.")(sessions_cmd)


@app.command(name="version", help="Print the deployforge version.")
def version_cmd() -> None:
    typer.echo(__version__)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
