"""Shared helpers for CLI commands: settings overrides and error exit codes."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from deployforge.config import DeployConfig

EXIT_EXECUTION_FAILED = 1
EXIT_INVALID_INPUT = 2
EXIT_CANCELLED = 130


def load_settings(**overrides: Any) -> DeployConfig:
    """Environment settings with CLI options (those not None) applied on top."""
    config = DeployConfig()
    update = {k: v for k, v in overrides.items() if v is not None}
    if not update:
        return config
    for key in ("journal_path", "artifacts_path"):
        if key in update:
            update[key] = Path(update[key])
    return config.model_copy(update=update)
