"""Network boundary: the protocol the execution engine submits through.

Implementations translate RPC failures into the error taxonomy:
``TransientNetworkError`` for timeouts and unavailable endpoints,
``RevertError`` for contract-level rejections.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from eth_account.signers.local import LocalAccount
from pydantic import BaseModel, ConfigDict


class TransactionRequest(BaseModel):
    """A fully encoded transaction. ``to=None`` creates a contract."""

    model_config = ConfigDict(frozen=True)

    to: str | None = None
    data: bytes = b""
    value: int = 0

    @property
    def is_creation(self) -> bool:
        return self.to is None


class TxHandle(BaseModel):
    """Reference to a submitted transaction."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    sender: str | None = None
    nonce: int | None = None


class SignedTransaction(BaseModel):
    """A signed transaction. Its hash is fixed before it is broadcast."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    raw_transaction: bytes
    sender: str
    nonce: int
    request: TransactionRequest

    @property
    def handle(self) -> TxHandle:
        return TxHandle(tx_hash=self.tx_hash, sender=self.sender, nonce=self.nonce)


class TxReceipt(BaseModel):
    """Outcome of a mined transaction."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    block_number: int
    status: int = 1
    contract_address: str | None = None
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@runtime_checkable
class Network(Protocol):
    """What the engine needs from a chain."""

    @property
    def chain_id(self) -> int: ...

    def sign(self, request: TransactionRequest, account: LocalAccount) -> SignedTransaction:
        """Build and sign ``request`` from ``account`` at its next nonce."""
        ...

    def broadcast(self, signed: SignedTransaction) -> TxHandle:
        """Send ``signed`` to the network.

        Broadcasting the same signed transaction again is safe: a network
        that already holds it returns the same handle.
        """
        ...

    def wait_for_confirmation(self, handle: TxHandle, min_depth: int) -> TxReceipt:
        """Block until the transaction is ``min_depth`` blocks deep.

        ``min_depth`` counts the inclusion block. Raises ``RevertError`` if
        the transaction failed.
        """
        ...

    def get_receipt(self, handle: TxHandle) -> TxReceipt | None:
        """Receipt of a mined transaction, or None if it is not mined yet."""
        ...

    def is_known(self, handle: TxHandle) -> bool:
        """Whether the network has seen the transaction (mined or pending)."""
        ...
