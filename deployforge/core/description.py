"""Loading deployment descriptions and inputs from JSON files.

A description file looks like::

    {
      "roots": ["ProxyModule"],
      "modules": [
        {"id": "CryptoModule",
         "actions": [{"kind": "deploy_library", "id": "Crypto", "library_name": "Crypto"}]},
        {"id": "VaultModule", "depends_on": ["CryptoModule"],
         "actions": [{"kind": "deploy_contract", "id": "Vault", "contract_name": "Vault",
                      "libraries": {"Crypto": {"ref": "CryptoModule#Crypto"}}}]}
      ]
    }

Argument markers: ``{"ref": action_id}``, ``{"account": index}``,
``{"external": key}`` and ``{"encode": {...}}``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from deployforge.core.errors import ConfigurationError
from deployforge.models.modules import DeploymentDescription, DeploymentInputs


def _read_json(path: Path, what: str) -> Any:
    path = Path(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"{what} file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{what} file {path} is not valid JSON: {exc}") from exc


def parse_description(data: dict[str, Any]) -> DeploymentDescription:
    try:
        return DeploymentDescription.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid deployment description: {exc}") from exc


def load_description(path: Path) -> DeploymentDescription:
    """Read and validate a deployment description file."""
    return parse_description(_read_json(path, "Description"))


def load_inputs(path: Path | None) -> DeploymentInputs:
    """Read deployment inputs; no path means no external addresses."""
    if path is None:
        return DeploymentInputs()
    try:
        return DeploymentInputs.model_validate(_read_json(path, "Inputs"))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid deployment inputs: {exc}") from exc
