"""Execution engine: runs scheduled actions against a network exactly once.

For each action, in order:

1. A ``completed`` journal record means the action already happened in this
   session. Its address is reused and nothing is submitted.
2. Otherwise dependencies are resolved to addresses, the payload is encoded
   and the transaction is submitted and confirmed to the configured depth.
3. ``completed`` is journaled before the next action starts.
4. On failure ``failed`` is journaled and ``ExecutionError`` aborts the run.

A ``pending`` or ``failed`` record that carries a transaction hash is
reconciled against the network before anything is re-submitted, so a crash
or timeout after broadcast never produces a second artifact.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from eth_account.signers.local import LocalAccount

from deployforge.core.encoder import CallEncoder
from deployforge.core.errors import (
    ConfigurationError,
    DeploymentCancelled,
    ExecutionError,
    NetworkError,
    RevertError,
    TransientNetworkError,
)
from deployforge.core.hasher import compute_input_hash
from deployforge.core.journal import StateJournal
from deployforge.models.actions import Call, DeployContract, DeployLibrary, ReferenceExisting
from deployforge.models.artifacts import (
    AccountRef,
    EncodedCall,
    ExternalAddress,
    ResolvedArtifact,
    UnresolvedArtifact,
)
from deployforge.models.config import EngineConfig
from deployforge.models.graph import ActionNode
from deployforge.models.interfaces import ContractInterface
from deployforge.models.journal import ActionStatus, DeploymentRecord
from deployforge.models.modules import DeploymentInputs
from deployforge.models.results import ActionOutcome, SessionResult
from deployforge.network.accounts import AccountSet
from deployforge.network.base import (
    Network,
    SignedTransaction,
    TransactionRequest,
    TxHandle,
    TxReceipt,
)
from deployforge.network.catalog import ArtifactCatalog

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PreparedAction:
    """An action with every input resolved, ready to submit."""

    input_hash: str
    request: TransactionRequest | None = None  # None: nothing to submit
    account: LocalAccount | None = None
    address: str | None = None  # known up front for ReferenceExisting


class ExecutionEngine:
    """Executes an ordered list of actions for one session.

    Parameters
    ----------
    network:
        Chain the transactions go to.
    journal:
        Durable per-session record of action outcomes.
    catalog:
        Compiled contract interfaces used for encoding.
    accounts:
        Signing accounts addressed by ``AccountRef`` index.
    inputs:
        External addresses addressed by ``ExternalAddress`` key.
    sleep:
        Called with the backoff delay between retries.
    """

    def __init__(
        self,
        network: Network,
        journal: StateJournal,
        catalog: ArtifactCatalog,
        accounts: AccountSet,
        *,
        inputs: DeploymentInputs | None = None,
        encoder: CallEncoder | None = None,
        config: EngineConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.network = network
        self.journal = journal
        self.catalog = catalog
        self.accounts = accounts
        self.inputs = inputs or DeploymentInputs()
        self.encoder = encoder or CallEncoder()
        self.config = config or EngineConfig()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(
        self,
        session_id: str,
        ordered: Sequence[ActionNode],
        cancel: threading.Event | None = None,
    ) -> SessionResult:
        """Execute ``ordered`` (a topological order) within ``session_id``.

        Returns a ``SessionResult`` when every action has completed. Raises
        ``ExecutionError`` on the first unrecoverable failure and
        ``DeploymentCancelled`` if ``cancel`` is set between actions.
        """
        nodes = {node.action_id: node for node in ordered}
        resolved: dict[str, str | None] = {}
        outcomes: list[ActionOutcome] = []

        logger.info("Session %s: %d actions", session_id, len(ordered))
        for node in ordered:
            if cancel is not None and cancel.is_set():
                logger.warning(
                    "Session %s cancelled before %s", session_id, node.action_id
                )
                raise DeploymentCancelled(session_id, [o.action_id for o in outcomes])

            record = self.journal.get(session_id, node.action_id)
            if record is not None and record.is_completed:
                outcome = self._reuse(node, record, resolved, nodes)
            else:
                outcome = self._execute(session_id, node, record, resolved, nodes, outcomes)
            resolved[node.action_id] = outcome.address
            outcomes.append(outcome)

        submitted = sum(1 for o in outcomes if not o.reused and o.tx_hash)
        logger.info(
            "Session %s complete: %d submitted, %d reused",
            session_id,
            submitted,
            len(outcomes) - submitted,
        )
        return SessionResult(
            session_id=session_id,
            outcomes=outcomes,
            network={"chain_id": self.network.chain_id},
        )

    # ------------------------------------------------------------------
    # Per-action execution
    # ------------------------------------------------------------------

    def _reuse(
        self,
        node: ActionNode,
        record: DeploymentRecord,
        resolved: dict[str, str | None],
        nodes: dict[str, ActionNode],
    ) -> ActionOutcome:
        drifted = False
        try:
            prepared = self._prepare(node, resolved, nodes)
        except (ConfigurationError, ValueError, TypeError) as exc:
            logger.warning(
                "%s: cannot recompute inputs of the completed action (%s); reusing it",
                node.action_id,
                exc,
            )
            drifted = True
        else:
            if record.input_hash and prepared.input_hash != record.input_hash:
                logger.warning(
                    "%s: inputs changed since it completed at %s; reusing the "
                    "journaled result without re-submitting",
                    node.action_id,
                    record.resolved_address or record.tx_hash,
                )
                drifted = True

        logger.info("%s already completed, reusing %s", node.action_id, record.resolved_address)
        return ActionOutcome(
            action_id=node.action_id,
            module_id=node.module_id,
            kind=node.kind,
            address=record.resolved_address,
            tx_hash=record.tx_hash,
            reused=True,
            drifted=drifted,
        )

    def _execute(
        self,
        session_id: str,
        node: ActionNode,
        record: DeploymentRecord | None,
        resolved: dict[str, str | None],
        nodes: dict[str, ActionNode],
        outcomes: list[ActionOutcome],
    ) -> ActionOutcome:
        completed_ids = [o.action_id for o in outcomes]

        def fail(detail: str, tx_hash: str | None, input_hash: str = "") -> ExecutionError:
            self.journal.put(
                DeploymentRecord(
                    session_id=session_id,
                    action_id=node.action_id,
                    status=ActionStatus.FAILED,
                    tx_hash=tx_hash,
                    error_detail=detail,
                    input_hash=input_hash,
                )
            )
            logger.error("%s failed: %s", node.action_id, detail)
            return ExecutionError(
                node.action_id, detail, session_id=session_id, completed=completed_ids
            )

        missing = [d for d in node.dependencies if d not in resolved]
        if missing:
            raise fail(f"dependencies not completed: {', '.join(missing)}", None)

        try:
            prepared = self._prepare(node, resolved, nodes)
        except (ConfigurationError, ValueError, TypeError) as exc:
            raise fail(f"cannot prepare transaction: {exc}", None) from exc

        if prepared.request is None:
            self._complete(session_id, node, prepared, prepared.address, None)
            logger.info("%s bound to %s", node.action_id, prepared.address)
            return ActionOutcome(
                action_id=node.action_id,
                module_id=node.module_id,
                kind=node.kind,
                address=prepared.address,
            )

        handle: TxHandle | None = None
        try:
            if record is not None and record.tx_hash:
                handle = self._reconcile(node, record, prepared)
            if handle is None:
                signed = self._sign(session_id, node, prepared)
                handle = signed.handle
                self._broadcast(node, signed)
            receipt = self._retry(
                node,
                "confirm",
                lambda: self.network.wait_for_confirmation(handle, self.config.confirmations),
            )
        except RevertError as exc:
            tx_hash = exc.tx_hash or (handle.tx_hash if handle else None)
            raise fail(f"reverted: {exc.reason}", tx_hash, prepared.input_hash) from exc
        except NetworkError as exc:
            tx_hash = handle.tx_hash if handle else None
            raise fail(str(exc), tx_hash, prepared.input_hash) from exc

        address = self._produced_address(node, receipt)
        if node.action.produces_address and address is None:
            raise fail("receipt carries no contract address", receipt.tx_hash, prepared.input_hash)

        self._complete(session_id, node, prepared, address, receipt.tx_hash)
        logger.info(
            "%s confirmed in block %d%s",
            node.action_id,
            receipt.block_number,
            f" at {address}" if address else "",
        )
        return ActionOutcome(
            action_id=node.action_id,
            module_id=node.module_id,
            kind=node.kind,
            address=address,
            tx_hash=receipt.tx_hash,
        )

    def _sign(
        self, session_id: str, node: ActionNode, prepared: PreparedAction
    ) -> SignedTransaction:
        signed = self._retry(
            node, "sign", lambda: self.network.sign(prepared.request, prepared.account)
        )
        # Journaled before broadcast: a resume finds the hash even when the
        # broadcast reply never arrived.
        self.journal.put(
            DeploymentRecord(
                session_id=session_id,
                action_id=node.action_id,
                status=ActionStatus.PENDING,
                tx_hash=signed.tx_hash,
                input_hash=prepared.input_hash,
            )
        )
        return signed

    def _broadcast(self, node: ActionNode, signed: SignedTransaction) -> None:
        # Retries re-send the same signed bytes, never a fresh nonce.
        self._retry(node, "broadcast", lambda: self.network.broadcast(signed))
        logger.info("%s submitted as %s", node.action_id, signed.tx_hash)

    def _reconcile(
        self, node: ActionNode, record: DeploymentRecord, prepared: PreparedAction
    ) -> TxHandle | None:
        """Return a handle to wait on, or None when the action must be re-submitted."""
        handle = TxHandle(tx_hash=record.tx_hash)
        receipt = self._retry(node, "lookup", lambda: self.network.get_receipt(handle))
        if receipt is not None and not receipt.succeeded:
            logger.info("%s: previous transaction %s reverted, re-submitting",
                        node.action_id, handle.tx_hash)
            return None
        if receipt is None and not self._retry(
            node, "lookup", lambda: self.network.is_known(handle)
        ):
            logger.warning("%s: previous transaction %s was dropped, re-submitting",
                           node.action_id, handle.tx_hash)
            return None

        if record.input_hash and record.input_hash != prepared.input_hash:
            logger.warning(
                "%s: inputs changed since %s was broadcast; keeping the broadcast transaction",
                node.action_id,
                handle.tx_hash,
            )
        logger.info("%s: reconciling previously submitted %s", node.action_id, handle.tx_hash)
        return handle

    def _complete(
        self,
        session_id: str,
        node: ActionNode,
        prepared: PreparedAction,
        address: str | None,
        tx_hash: str | None,
    ) -> None:
        self.journal.put(
            DeploymentRecord(
                session_id=session_id,
                action_id=node.action_id,
                status=ActionStatus.COMPLETED,
                resolved_address=address,
                tx_hash=tx_hash,
                input_hash=prepared.input_hash,
            )
        )

    @staticmethod
    def _produced_address(node: ActionNode, receipt: TxReceipt) -> str | None:
        if isinstance(node.action, (DeployContract, DeployLibrary)):
            return receipt.contract_address
        return None

    def _retry(self, node: ActionNode, phase: str, fn: Callable[[], T]) -> T:
        policy = self.config.retry
        for attempt in range(policy.max_attempts):
            try:
                return fn()
            except TransientNetworkError as exc:
                if attempt >= policy.max_attempts - 1:
                    raise
                delay_s = policy.delay_for(attempt)
                logger.warning(
                    "%s: %s failed (attempt %d/%d): %s; retrying in %.2fs",
                    node.action_id,
                    phase,
                    attempt + 1,
                    policy.max_attempts,
                    exc,
                    delay_s,
                )
                self._sleep(delay_s)
        raise RuntimeError("retry loop exhausted")

    # ------------------------------------------------------------------
    # Payload preparation
    # ------------------------------------------------------------------

    def _prepare(
        self,
        node: ActionNode,
        resolved: dict[str, str | None],
        nodes: dict[str, ActionNode],
    ) -> PreparedAction:
        action = node.action

        if isinstance(action, ReferenceExisting):
            address = self._resolve(action.address, resolved, nodes).address
            return PreparedAction(
                input_hash=compute_input_hash(
                    node.action_id, node.kind, sender=None, to=address, data=b""
                ),
                address=address,
            )

        account = self.accounts[action.sender]
        if isinstance(action, (DeployContract, DeployLibrary)):
            interface = self.catalog.get(action.contract_name)
            libraries = {
                name: self._resolve(src, resolved, nodes).address
                for name, src in action.libraries.items()
            }
            args = self._resolve(getattr(action, "args", ()), resolved, nodes)
            data = self.encoder.encode_constructor(interface, args, libraries)
            request = TransactionRequest(to=None, data=data, value=getattr(action, "value", 0))
        elif isinstance(action, Call):
            to = self._resolve(action.target, resolved, nodes).address
            interface = self._interface_for(action.target, action.contract_name, nodes)
            args = self._resolve(action.args, resolved, nodes)
            data = self.encoder.encode(interface, action.function, args)
            request = TransactionRequest(to=to, data=data, value=action.value)
        else:
            raise TypeError(f"Unsupported action kind {node.kind!r}")

        return PreparedAction(
            input_hash=compute_input_hash(
                node.action_id,
                node.kind,
                sender=account.address,
                to=request.to,
                data=request.data,
                value=request.value,
            ),
            request=request,
            account=account,
        )

    def _resolve(
        self,
        value: Any,
        resolved: dict[str, str | None],
        nodes: dict[str, ActionNode],
    ) -> Any:
        """Substitute every deferred value inside ``value``."""
        if isinstance(value, ResolvedArtifact):
            return value
        if isinstance(value, UnresolvedArtifact):
            address = resolved.get(value.action_id)
            if address is None:
                raise ValueError(f"{value.action_id} has not resolved to an address")
            return ResolvedArtifact(address=address, action_id=value.action_id)
        if isinstance(value, AccountRef):
            return ResolvedArtifact(address=self.accounts[value].address)
        if isinstance(value, ExternalAddress):
            address = self.inputs.external_addresses.get(value.key)
            if address is None:
                raise ConfigurationError(f"External address {value.key!r} was not supplied")
            return ResolvedArtifact(address=address)
        if isinstance(value, EncodedCall):
            interface = self._interface_for(value.target, value.contract_name, nodes)
            args = self._resolve(value.args, resolved, nodes)
            return self.encoder.encode(interface, value.function, args)
        if isinstance(value, dict):
            return {k: self._resolve(v, resolved, nodes) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._resolve(v, resolved, nodes) for v in value]
        return value

    def _interface_for(
        self,
        target: UnresolvedArtifact | ExternalAddress,
        contract_name: str | None,
        nodes: dict[str, ActionNode],
    ) -> ContractInterface:
        name = contract_name
        if name is None and isinstance(target, UnresolvedArtifact):
            producer = nodes.get(target.action_id)
            name = producer.contract_name if producer is not None else None
        if name is None:
            raise ConfigurationError(f"Cannot tell which contract interface {target} has")
        return self.catalog.get(name)
