"""Network boundary: signing accounts, contract artifacts and chain adapters."""

from deployforge.network.accounts import AccountSet
from deployforge.network.base import (
    Network,
    SignedTransaction,
    TransactionRequest,
    TxHandle,
    TxReceipt,
)
from deployforge.network.catalog import ArtifactCatalog
from deployforge.network.simulated import SimulatedNetwork
from deployforge.network.web3_network import Web3Network

__all__ = [
    "AccountSet",
    "ArtifactCatalog",
    "Network",
    "SignedTransaction",
    "SimulatedNetwork",
    "TransactionRequest",
    "TxHandle",
    "TxReceipt",
    "Web3Network",
]
