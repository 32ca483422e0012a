"""In-memory deterministic chain for dry runs and tests.

Every submission is mined immediately into its own block. Contract
addresses derive from sender and nonce, so the same sequence of
submissions always yields the same addresses. Faults can be injected to
exercise the engine's revert and retry handling.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_checksum_address

from deployforge.core.errors import NetworkError, RevertError, TransientNetworkError
from deployforge.network.base import SignedTransaction, TransactionRequest, TxHandle, TxReceipt

logger = logging.getLogger(__name__)

RevertPredicate = Callable[[TransactionRequest, str], bool]


@dataclass
class Submission:
    """One transaction accepted by the simulated chain."""

    handle: TxHandle
    request: TransactionRequest
    receipt: TxReceipt
    revert_reason: str | None = None


class SimulatedNetwork:
    """Deterministic in-process stand-in for an EVM node.

    Parameters
    ----------
    chain_id:
        Reported chain id. Defaults to the Hardhat network's.
    """

    def __init__(self, chain_id: int = 31337) -> None:
        self._chain_id = chain_id
        self._lock = threading.Lock()
        self._nonces: dict[str, int] = {}
        self._block_number = 0
        self._by_hash: dict[str, Submission] = {}
        self._dropped: set[str] = set()
        self._reverts: list[tuple[RevertPredicate, str, int | None]] = []
        self._transient: dict[str, int] = {"submit": 0, "ack": 0, "confirm": 0}
        self.submissions: list[Submission] = []
        self.code: dict[str, bytes] = {}

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def block_number(self) -> int:
        return self._block_number

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def inject_revert(
        self, predicate: RevertPredicate, reason: str = "execution reverted", times: int | None = 1
    ) -> None:
        """Revert matching transactions. ``times=None`` reverts every match."""
        self._reverts.append((predicate, reason, times))

    def inject_transient(self, count: int = 1, phase: str = "submit") -> None:
        """Fail the next ``count`` calls of ``phase``.

        ``submit`` fails a broadcast before the chain sees it, ``ack`` after
        the chain accepted it, ``confirm`` fails a confirmation wait.
        """
        if phase not in self._transient:
            raise ValueError(f"Unknown phase {phase!r}")
        self._transient[phase] += count

    def drop(self, tx_hash: str) -> None:
        """Forget a transaction, as if it fell out of the mempool."""
        self._dropped.add(tx_hash)

    def clear_faults(self) -> None:
        self._reverts.clear()
        self._transient = {"submit": 0, "ack": 0, "confirm": 0}

    # ------------------------------------------------------------------
    # Network protocol
    # ------------------------------------------------------------------

    def sign(self, request: TransactionRequest, account: LocalAccount) -> SignedTransaction:
        sender = account.address
        with self._lock:
            nonce = self._nonces.get(sender, 0)
        preimage = (
            bytes.fromhex(sender[2:])
            + nonce.to_bytes(32, "big")
            + request.value.to_bytes(32, "big")
            + request.data
        )
        return SignedTransaction(
            tx_hash="0x" + keccak(preimage).hex(),
            raw_transaction=preimage,
            sender=sender,
            nonce=nonce,
            request=request,
        )

    def broadcast(self, signed: SignedTransaction) -> TxHandle:
        with self._lock:
            self._maybe_fail("submit")
            if self._lookup(signed.handle) is not None:
                logger.debug("Simulated tx %s already known", signed.tx_hash)
                return signed.handle
            if signed.nonce != self._nonces.get(signed.sender, 0):
                raise NetworkError(
                    f"nonce too low: {signed.sender} is at "
                    f"{self._nonces.get(signed.sender, 0)}, got {signed.nonce}"
                )
            self._mine(signed)
            # Accepted, but the caller may still not hear about it.
            self._maybe_fail("ack")
        logger.debug(
            "Simulated tx %s from %s (nonce %d)", signed.tx_hash, signed.sender, signed.nonce
        )
        return signed.handle

    def wait_for_confirmation(self, handle: TxHandle, min_depth: int) -> TxReceipt:
        with self._lock:
            self._maybe_fail("confirm")
            submission = self._lookup(handle)
            if submission is None:
                raise TransientNetworkError(f"Transaction {handle.tx_hash} not found")
            if submission.revert_reason is not None:
                raise RevertError(
                    submission.revert_reason,
                    tx_hash=handle.tx_hash,
                    receipt=submission.receipt.model_dump(),
                )
            # Mine empty blocks until the requested depth is reached.
            target_block = submission.receipt.block_number + min_depth - 1
            self._block_number = max(self._block_number, target_block)
            return submission.receipt

    def get_receipt(self, handle: TxHandle) -> TxReceipt | None:
        submission = self._lookup(handle)
        return submission.receipt if submission else None

    def is_known(self, handle: TxHandle) -> bool:
        return self._lookup(handle) is not None

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    @property
    def creations(self) -> list[Submission]:
        """Successful contract creations, in submission order."""
        return [s for s in self.submissions if s.receipt.contract_address]

    @staticmethod
    def contract_address(sender: str, nonce: int) -> str:
        digest = keccak(bytes.fromhex(sender[2:]) + nonce.to_bytes(32, "big"))
        return to_checksum_address(digest[-20:])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lookup(self, handle: TxHandle) -> Submission | None:
        if handle.tx_hash in self._dropped:
            return None
        return self._by_hash.get(handle.tx_hash)

    def _mine(self, signed: SignedTransaction) -> None:
        request, sender = signed.request, signed.sender
        self._nonces[sender] = signed.nonce + 1
        self._block_number += 1

        reason = self._revert_reason(request, sender)
        contract_address = None
        if reason is None and request.is_creation:
            contract_address = self.contract_address(sender, signed.nonce)
            self.code[contract_address] = request.data

        receipt = TxReceipt(
            tx_hash=signed.tx_hash,
            block_number=self._block_number,
            status=0 if reason is not None else 1,
            contract_address=contract_address,
            gas_used=21000 + 16 * len(request.data),
        )
        submission = Submission(signed.handle, request, receipt, reason)
        self.submissions.append(submission)
        self._by_hash[signed.tx_hash] = submission

    def _maybe_fail(self, phase: str) -> None:
        if self._transient[phase] > 0:
            self._transient[phase] -= 1
            raise TransientNetworkError(f"Simulated RPC unavailable during {phase}")

    def _revert_reason(self, request: TransactionRequest, sender: str) -> str | None:
        for position, (predicate, reason, times) in enumerate(self._reverts):
            if predicate(request, sender):
                if times is not None:
                    if times <= 1:
                        del self._reverts[position]
                    else:
                        self._reverts[position] = (predicate, reason, times - 1)
                return reason
        return None
