"""Deployment orchestrator: the coordinator for deployforge sessions.

Wires the graph builder, scheduler, journal, encoder and a network into a
deployment run. Everything that can be checked without touching the chain
(graph shape, artifacts, library links, accounts, external addresses,
chain id) is checked in ``preflight`` before the first submission.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from deployforge.config import DeployConfig, enforce_production_constraints
from deployforge.core.deduplicator import ExpansionCache
from deployforge.core.engine import ExecutionEngine
from deployforge.core.errors import ConfigurationError, NetworkError
from deployforge.core.graph_builder import ActionGraphBuilder
from deployforge.core.journal import StateJournal
from deployforge.core.scheduler import TopologicalScheduler
from deployforge.models.actions import Call, DeployContract, DeployLibrary, ReferenceExisting
from deployforge.models.artifacts import AccountRef, EncodedCall, ExternalAddress, UnresolvedArtifact
from deployforge.models.config import EngineConfig
from deployforge.models.graph import ActionGraph, ActionNode
from deployforge.models.interfaces import ContractInterface
from deployforge.models.journal import DeploymentRecord
from deployforge.models.modules import DeploymentDescription, DeploymentInputs
from deployforge.models.results import SessionResult
from deployforge.network.accounts import HARDHAT_DEV_KEYS, AccountSet
from deployforge.network.base import Network
from deployforge.network.catalog import ArtifactCatalog
from deployforge.network.simulated import SimulatedNetwork
from deployforge.network.web3_network import Web3Network

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"df-{ts}-{uuid.uuid4().hex[:3]}"


class DeploymentOrchestrator:
    """Plans and runs deployments of one description.

    Parameters
    ----------
    description:
        Module definitions and the roots to deploy.
    network:
        Target chain.
    journal:
        State journal shared by every session of this orchestrator.
    catalog:
        Compiled contract interfaces.
    accounts:
        Signing accounts.
    inputs:
        External addresses.
    expected_chain_id:
        When set, preflight refuses to run against any other chain.
    """

    def __init__(
        self,
        description: DeploymentDescription,
        *,
        network: Network,
        journal: StateJournal,
        catalog: ArtifactCatalog,
        accounts: AccountSet,
        inputs: DeploymentInputs | None = None,
        engine_config: EngineConfig | None = None,
        expected_chain_id: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.description = description
        self.network = network
        self.journal = journal
        self.catalog = catalog
        self.accounts = accounts
        self.inputs = inputs or DeploymentInputs()
        self.expected_chain_id = expected_chain_id
        self.engine = ExecutionEngine(
            network,
            journal,
            catalog,
            accounts,
            inputs=self.inputs,
            config=engine_config,
            sleep=sleep,
        )
        self._builder = ActionGraphBuilder(description.registry())
        self._scheduler = TopologicalScheduler()

    @classmethod
    def from_config(
        cls,
        config: DeployConfig,
        description: DeploymentDescription,
        inputs: DeploymentInputs | None = None,
        *,
        simulate: bool = False,
    ) -> DeploymentOrchestrator:
        """Build an orchestrator from settings.

        ``simulate`` swaps the RPC network for an in-memory chain.
        """
        enforce_production_constraints(config, simulate=simulate)

        keys = config.signing_keys
        if not keys and config.network == "hardhat":
            logger.info("No signing keys configured; using Hardhat development accounts")
            keys = list(HARDHAT_DEV_KEYS)
        accounts = AccountSet.from_private_keys(keys)

        expected_chain_id = config.expected_chain_id()
        network: Network
        if simulate:
            network = SimulatedNetwork(chain_id=expected_chain_id or 31337)
        else:
            preset = config.preset()
            network = Web3Network(
                config.resolve_rpc_url(),
                supports_eip1559=preset.supports_eip1559 if preset else True,
                timeout_s=config.tx_timeout_seconds,
                poll_interval_s=config.poll_interval_seconds,
            )

        return cls(
            description,
            network=network,
            journal=StateJournal(config.journal_path),
            catalog=ArtifactCatalog.from_directory(config.artifacts_path),
            accounts=accounts,
            inputs=inputs,
            engine_config=config.engine_config,
            expected_chain_id=expected_chain_id,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def build_graph(self) -> ActionGraph:
        return self._builder.build(self.description.root_ids, ExpansionCache())

    def plan(self) -> list[ActionNode]:
        """Build the action graph and return its execution order.

        Raises ``BuildError`` subclasses; nothing touches the network.
        """
        return self._scheduler.schedule(self.build_graph())

    def preflight(self, ordered: list[ActionNode]) -> None:
        """Check every external input the plan needs.

        Raises one ``ConfigurationError`` listing all problems found.
        """
        problems: list[str] = []
        producers = {node.action_id: node for node in ordered}

        for node in ordered:
            action = node.action
            try:
                if isinstance(action, (DeployContract, DeployLibrary)):
                    interface = self.catalog.get(action.contract_name)
                    if not interface.is_deployable:
                        problems.append(
                            f"{node.action_id}: {action.contract_name} has no bytecode"
                        )
                    problems.extend(
                        f"{node.action_id}: {p}"
                        for p in _library_problems(interface, list(action.libraries))
                    )
                elif isinstance(action, ReferenceExisting):
                    self.catalog.get(action.contract_name)
                elif isinstance(action, Call):
                    self._check_interface(action.target, action.contract_name, producers)
            except ConfigurationError as exc:
                problems.append(f"{node.action_id}: {exc}")

            for value in action.deferred_values():
                if isinstance(value, AccountRef) and value.index >= len(self.accounts):
                    problems.append(
                        f"{node.action_id}: account #{value.index} is not configured "
                        f"({len(self.accounts)} available)"
                    )
                elif (
                    isinstance(value, ExternalAddress)
                    and value.key not in self.inputs.external_addresses
                ):
                    problems.append(
                        f"{node.action_id}: external address {value.key!r} was not supplied"
                    )
                elif isinstance(value, EncodedCall):
                    try:
                        self._check_interface(value.target, value.contract_name, producers)
                    except ConfigurationError as exc:
                        problems.append(f"{node.action_id}: {exc}")

        if self.expected_chain_id is not None:
            try:
                actual = self.network.chain_id
            except NetworkError as exc:
                problems.append(f"cannot reach network: {exc}")
            else:
                if actual != self.expected_chain_id:
                    problems.append(
                        f"network reports chain id {actual}, expected {self.expected_chain_id}"
                    )

        if problems:
            raise ConfigurationError(
                "Preflight failed:\n" + "\n".join(f"  - {p}" for p in problems)
            )

    def _check_interface(
        self,
        target: UnresolvedArtifact | ExternalAddress,
        contract_name: str | None,
        producers: dict[str, ActionNode],
    ) -> None:
        name = contract_name
        if name is None and isinstance(target, UnresolvedArtifact):
            producer = producers.get(target.action_id)
            name = producer.contract_name if producer is not None else None
        if name is None:
            raise ConfigurationError(f"cannot tell which contract interface {target} has")
        self.catalog.get(name)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def deploy(
        self,
        session_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> SessionResult:
        """Plan, preflight and execute. Re-using a session id resumes it."""
        session_id = session_id or new_session_id()
        ordered = self.plan()
        self.preflight(ordered)
        logger.info(
            "Deploying %d actions in session %s", len(ordered), session_id
        )
        return self.engine.run(session_id, ordered, cancel=cancel)

    def status(self, session_id: str) -> dict[str, DeploymentRecord]:
        """Current journal state of every action recorded for ``session_id``."""
        return self.journal.current_states(session_id)


def _library_problems(interface: ContractInterface, provided: list[str]) -> list[str]:
    required = interface.required_libraries()
    short_names = {fq.split(":", 1)[1]: fq for fq in required}
    linked: set[str] = set()
    problems = []
    for key in provided:
        fq = key if key in required else short_names.get(key)
        if fq is None:
            problems.append(f"{interface.contract_name} does not link a library named {key!r}")
        else:
            linked.add(fq)
    problems.extend(
        f"{interface.contract_name} needs library {fq} to be linked"
        for fq in required
        if fq not in linked
    )
    return problems
