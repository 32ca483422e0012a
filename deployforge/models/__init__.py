"""deployforge data models (Pydantic v2, frozen)."""

from deployforge.models.actions import (
    Action,
    ActionKind,
    Call,
    DeployContract,
    DeployLibrary,
    ReferenceExisting,
)
from deployforge.models.artifacts import (
    AccountRef,
    ArtifactReference,
    EncodedCall,
    ExternalAddress,
    ResolvedArtifact,
    UnresolvedArtifact,
)
from deployforge.models.config import EngineConfig, RetryPolicy
from deployforge.models.graph import ActionGraph, ActionNode, ExpandedModule
from deployforge.models.interfaces import ContractInterface, LinkOffset
from deployforge.models.journal import ActionStatus, DeploymentRecord
from deployforge.models.modules import (
    DeploymentDescription,
    DeploymentInputs,
    ModuleBuilder,
    ModuleDefinition,
)
from deployforge.models.networks import NETWORK_PRESETS, NetworkPreset
from deployforge.models.results import ActionOutcome, SessionResult

__all__ = [
    # artifacts
    "AccountRef",
    "ArtifactReference",
    "EncodedCall",
    "ExternalAddress",
    "ResolvedArtifact",
    "UnresolvedArtifact",
    # actions
    "Action",
    "ActionKind",
    "Call",
    "DeployContract",
    "DeployLibrary",
    "ReferenceExisting",
    # modules
    "DeploymentDescription",
    "DeploymentInputs",
    "ModuleBuilder",
    "ModuleDefinition",
    # graph
    "ActionGraph",
    "ActionNode",
    "ExpandedModule",
    # interfaces
    "ContractInterface",
    "LinkOffset",
    # journal
    "ActionStatus",
    "DeploymentRecord",
    # results
    "ActionOutcome",
    "SessionResult",
    # config
    "EngineConfig",
    "RetryPolicy",
    # networks
    "NETWORK_PRESETS",
    "NetworkPreset",
]
