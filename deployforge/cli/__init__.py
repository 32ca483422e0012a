"""deployforge CLI: Typer-based command-line interface.

Provides the ``deployforge`` command with subcommands for planning and
running deployments and for inspecting the state journal.

All output uses Rich for formatted terminal display.
"""
