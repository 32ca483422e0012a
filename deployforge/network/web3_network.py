"""Network adapter over a JSON-RPC node using web3.py.

Transactions are built locally (nonce from the ``pending`` block, gas from
an estimate plus a buffer, EIP-1559 or legacy pricing), signed with the
sender's eth-account key and broadcast raw.

The transaction hash is known once signed, so a broadcast whose reply was
lost can be re-sent byte for byte without risking a second transaction.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from deployforge.core.errors import NetworkError, RevertError, TransientNetworkError
from deployforge.network.base import SignedTransaction, TransactionRequest, TxHandle, TxReceipt

logger = logging.getLogger(__name__)

GAS_BUFFER_MULTIPLIER = 1.2
MAX_BASE_FEE_GROWTH_MULTIPLIER = 2
SUGGESTED_GAS_PRICE_MULTIPLIER = 1.1

# Node replies meaning the signed bytes (or their nonce) were already taken.
ALREADY_ACCEPTED_MARKERS = ("already known", "known transaction", "nonce too low")


class Web3Network:
    """Submits and confirms transactions against an RPC endpoint.

    Parameters
    ----------
    rpc_url:
        HTTP(S) JSON-RPC endpoint.
    supports_eip1559:
        Price with ``maxFeePerGas``/``maxPriorityFeePerGas`` when True,
        ``gasPrice`` otherwise.
    timeout_s:
        Upper bound on waiting for a receipt and for confirmation depth.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        supports_eip1559: bool = True,
        timeout_s: float = 300.0,
        poll_interval_s: float = 1.0,
        web3: Web3 | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        self._eip1559 = supports_eip1559
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._chain_id: int | None = None

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self._rpc(lambda: self._w3.eth.chain_id)
        return self._chain_id

    # ------------------------------------------------------------------
    # Network protocol
    # ------------------------------------------------------------------

    def sign(self, request: TransactionRequest, account: LocalAccount) -> SignedTransaction:
        sender = account.address
        tx: dict[str, Any] = {
            "from": sender,
            "data": request.data,
            "value": request.value,
            "chainId": self.chain_id,
        }
        if request.to is not None:
            tx["to"] = Web3.to_checksum_address(request.to)

        tx["nonce"] = self._rpc(
            lambda: self._w3.eth.get_transaction_count(sender, "pending")
        )
        estimate = self._rpc(lambda: self._w3.eth.estimate_gas(tx))
        tx["gas"] = int(math.ceil(estimate * GAS_BUFFER_MULTIPLIER))
        tx.update(self._gas_price())

        unsigned = {k: v for k, v in tx.items() if k != "from"}
        signed = account.sign_transaction(unsigned)
        return SignedTransaction(
            tx_hash=Web3.to_hex(signed.hash),
            raw_transaction=bytes(signed.raw_transaction),
            sender=sender,
            nonce=tx["nonce"],
            request=request,
        )

    def broadcast(self, signed: SignedTransaction) -> TxHandle:
        try:
            self._rpc(lambda: self._w3.eth.send_raw_transaction(signed.raw_transaction))
        except (TransientNetworkError, RevertError):
            raise
        except NetworkError as exc:
            if not _already_accepted(exc):
                raise
            # An earlier send of these exact bytes reached the node.
            logger.info("%s already known to the node: %s", signed.tx_hash, exc)
        else:
            logger.info(
                "Broadcast %s from %s (nonce %d)", signed.tx_hash, signed.sender, signed.nonce
            )
        return signed.handle

    def wait_for_confirmation(self, handle: TxHandle, min_depth: int) -> TxReceipt:
        try:
            raw = self._rpc(
                lambda: self._w3.eth.wait_for_transaction_receipt(
                    handle.tx_hash,
                    timeout=self._timeout_s,
                    poll_latency=self._poll_interval_s,
                )
            )
        except (TimeExhausted, TransactionNotFound) as exc:
            raise TransientNetworkError(
                f"No receipt for {handle.tx_hash} after {self._timeout_s}s"
            ) from exc

        receipt = self._to_receipt(raw)
        if not receipt.succeeded:
            raise RevertError(
                "status=0", tx_hash=handle.tx_hash, receipt=receipt.model_dump()
            )

        target_block = receipt.block_number + min_depth - 1
        deadline = time.monotonic() + self._timeout_s
        while self._rpc(lambda: self._w3.eth.block_number) < target_block:
            if time.monotonic() > deadline:
                raise TransientNetworkError(
                    f"{handle.tx_hash} did not reach {min_depth} confirmations "
                    f"within {self._timeout_s}s"
                )
            time.sleep(self._poll_interval_s)
        return receipt

    def get_receipt(self, handle: TxHandle) -> TxReceipt | None:
        try:
            raw = self._rpc(lambda: self._w3.eth.get_transaction_receipt(handle.tx_hash))
        except TransactionNotFound:
            return None
        return self._to_receipt(raw)

    def is_known(self, handle: TxHandle) -> bool:
        try:
            self._rpc(lambda: self._w3.eth.get_transaction(handle.tx_hash))
        except TransactionNotFound:
            return False
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _gas_price(self) -> dict[str, int]:
        if not self._eip1559:
            gas_price = self._rpc(lambda: self._w3.eth.gas_price)
            return {"gasPrice": int(gas_price * SUGGESTED_GAS_PRICE_MULTIPLIER)}
        latest = self._rpc(lambda: self._w3.eth.get_block("latest"))
        priority_fee = self._rpc(lambda: self._w3.eth.max_priority_fee)
        return {
            "maxFeePerGas": int(
                latest["baseFeePerGas"] * MAX_BASE_FEE_GROWTH_MULTIPLIER + priority_fee
            ),
            "maxPriorityFeePerGas": int(priority_fee),
        }

    @staticmethod
    def _rpc(call):
        """Run one RPC call, translating failures into the error taxonomy."""
        try:
            return call()
        except (TransactionNotFound, TimeExhausted):
            raise
        except ContractLogicError as exc:
            raise RevertError(str(exc)) from exc
        except OSError as exc:
            raise TransientNetworkError(str(exc)) from exc
        except (Web3Exception, ValueError) as exc:
            raise NetworkError(f"RPC rejected the request: {exc}") from exc

    @staticmethod
    def _to_receipt(raw: Any) -> TxReceipt:
        contract_address = raw.get("contractAddress")
        return TxReceipt(
            tx_hash=Web3.to_hex(raw["transactionHash"]),
            block_number=int(raw["blockNumber"]),
            status=int(raw.get("status", 1)),
            contract_address=Web3.to_checksum_address(contract_address)
            if contract_address
            else None,
            gas_used=int(raw.get("gasUsed", 0)),
        )


def _already_accepted(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in ALREADY_ACCEPTED_MARKERS)
