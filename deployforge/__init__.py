"""deployforge: declarative deployment of interdependent on-chain contracts.

Modules declare actions (deploy a contract or library, bind an existing
address, call a function). deployforge expands them into one action graph,
orders it deterministically, executes every action exactly once and keeps
a hash-chained journal so an interrupted session resumes without
duplicate deployments.
"""

__version__ = "0.1.0"
__description__ = "Declarative, resumable deployment orchestrator for EVM contracts"

from deployforge.core.orchestrator import DeploymentOrchestrator
from deployforge.models.modules import ModuleBuilder

__all__ = ["DeploymentOrchestrator", "ModuleBuilder", "__version__"]
