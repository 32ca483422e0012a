"""Tests for the network boundary: simulated chain, web3 adapter, accounts, catalog."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from eth_account import Account
from eth_utils import keccak
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3RPCError

from deployforge.core.engine import ExecutionEngine
from deployforge.core.errors import (
    ConfigurationError,
    ExecutionError,
    NetworkError,
    RevertError,
    TransientNetworkError,
)
from deployforge.core.graph_builder import ActionGraphBuilder
from deployforge.core.scheduler import TopologicalScheduler
from deployforge.models.artifacts import AccountRef
from deployforge.models.config import EngineConfig, RetryPolicy
from deployforge.models.interfaces import ContractInterface
from deployforge.models.journal import ActionStatus
from deployforge.models.modules import ModuleBuilder
from deployforge.network import Network
from deployforge.network.accounts import HARDHAT_DEV_KEYS, AccountSet
from deployforge.network.base import TransactionRequest, TxHandle
from deployforge.network.catalog import ArtifactCatalog
from deployforge.network.simulated import SimulatedNetwork
from deployforge.network.web3_network import Web3Network

from conftest import ARTIFACTS, OWNER

DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def _send(network, request, account):
    return network.broadcast(network.sign(request, account))


# ---------------------------------------------------------------------------
# Simulated network
# ---------------------------------------------------------------------------


class TestSimulatedNetwork:
    def test_satisfies_protocol(self, network):
        assert isinstance(network, Network)

    def test_creation_address_from_sender_and_nonce(self, network, accounts):
        creation = TransactionRequest(data=b"\x60\x01")
        first = _send(network, creation, accounts[0])
        second = _send(network, creation, accounts[0])
        r1 = network.wait_for_confirmation(first, 1)
        r2 = network.wait_for_confirmation(second, 1)

        assert (first.nonce, second.nonce) == (0, 1)
        assert r1.contract_address == SimulatedNetwork.contract_address(DEPLOYER, 0)
        assert r2.contract_address == SimulatedNetwork.contract_address(DEPLOYER, 1)
        assert r1.contract_address != r2.contract_address
        assert network.code[r1.contract_address] == b"\x60\x01"

    def test_deterministic_across_instances(self, accounts):
        addresses = []
        for _ in range(2):
            network = SimulatedNetwork()
            handle = _send(network, TransactionRequest(data=b"\x01"), accounts[0])
            addresses.append(network.get_receipt(handle).contract_address)
        assert addresses[0] == addresses[1]

    def test_calls_create_nothing(self, network, accounts):
        handle = _send(network, TransactionRequest(to=OWNER, data=b"\x12\x34"), accounts[0])
        assert network.wait_for_confirmation(handle, 1).contract_address is None
        assert network.creations == []

    def test_confirmation_depth_mines_blocks(self, network, accounts):
        handle = _send(network, TransactionRequest(data=b"\x01"), accounts[0])
        receipt = network.wait_for_confirmation(handle, 5)
        assert network.block_number == receipt.block_number + 4

    def test_injected_revert(self, network, accounts):
        network.inject_revert(lambda request, sender: True, reason="nope")
        handle = _send(network, TransactionRequest(data=b"\x01"), accounts[0])
        with pytest.raises(RevertError) as exc_info:
            network.wait_for_confirmation(handle, 1)
        assert exc_info.value.reason == "nope"
        assert exc_info.value.tx_hash == handle.tx_hash
        assert network.get_receipt(handle).status == 0
        # Consumed: the next transaction succeeds with the next nonce.
        retry = _send(network, TransactionRequest(data=b"\x01"), accounts[0])
        assert retry.nonce == 1
        assert network.wait_for_confirmation(retry, 1).succeeded

    def test_injected_transient_faults(self, network, accounts):
        network.inject_transient(1, phase="submit")
        with pytest.raises(TransientNetworkError):
            _send(network, TransactionRequest(data=b"\x01"), accounts[0])
        assert network.submissions == []

        handle = _send(network, TransactionRequest(data=b"\x01"), accounts[0])
        network.inject_transient(1, phase="confirm")
        with pytest.raises(TransientNetworkError):
            network.wait_for_confirmation(handle, 1)
        assert network.wait_for_confirmation(handle, 1).succeeded

    def test_unknown_phase(self, network):
        with pytest.raises(ValueError):
            network.inject_transient(1, phase="sign")

    def test_rebroadcast_is_idempotent(self, network, accounts):
        signed = network.sign(TransactionRequest(data=b"\x01"), accounts[0])
        first = network.broadcast(signed)
        again = network.broadcast(signed)
        assert first == again == signed.handle
        assert len(network.submissions) == 1

    def test_lost_acknowledgement(self, network, accounts):
        signed = network.sign(TransactionRequest(data=b"\x01"), accounts[0])
        network.inject_transient(1, phase="ack")
        with pytest.raises(TransientNetworkError):
            network.broadcast(signed)
        # The chain kept it; sending the same bytes again is a no-op.
        assert network.is_known(signed.handle)
        network.broadcast(signed)
        assert len(network.submissions) == 1

    def test_stale_nonce_rejected(self, network, accounts):
        first = network.sign(TransactionRequest(data=b"\x01"), accounts[0])
        second = network.sign(TransactionRequest(data=b"\x02"), accounts[0])
        assert first.nonce == second.nonce == 0
        network.broadcast(first)
        with pytest.raises(NetworkError, match="nonce too low"):
            network.broadcast(second)

    def test_dropped_transaction(self, network, accounts):
        handle = _send(network, TransactionRequest(data=b"\x01"), accounts[0])
        network.drop(handle.tx_hash)
        assert not network.is_known(handle)
        assert network.get_receipt(handle) is None
        with pytest.raises(TransientNetworkError):
            network.wait_for_confirmation(handle, 1)

    def test_clear_faults(self, network, accounts):
        network.inject_revert(lambda request, sender: True, times=None)
        network.inject_transient(2)
        network.clear_faults()
        handle = _send(network, TransactionRequest(data=b"\x01"), accounts[0])
        assert network.wait_for_confirmation(handle, 1).succeeded


# ---------------------------------------------------------------------------
# Web3 adapter
# ---------------------------------------------------------------------------


class FakeEth:
    """Just enough of ``w3.eth`` for Web3Network."""

    def __init__(self) -> None:
        self.chain_id = 31337
        self.block_number = 12
        self.gas_price = 1_000
        self.max_priority_fee = 2
        self.estimated: list[dict] = []
        self.raw_transactions: list[bytes] = []
        self.send_error: Exception | None = None
        self.receipt: dict | Exception = {
            "transactionHash": b"\x01" * 32,
            "blockNumber": 10,
            "status": 1,
            "contractAddress": OWNER.lower(),
            "gasUsed": 90_000,
        }

    def get_transaction_count(self, address, block_identifier):
        assert block_identifier == "pending"
        return 7

    def estimate_gas(self, tx):
        self.estimated.append(dict(tx))
        return 50_000

    def get_block(self, block_identifier):
        return {"baseFeePerGas": 100}

    def send_raw_transaction(self, raw):
        self.raw_transactions.append(bytes(raw))
        if self.send_error is not None:
            raise self.send_error
        return keccak(bytes(raw))

    def wait_for_transaction_receipt(self, tx_hash, timeout, poll_latency):
        if isinstance(self.receipt, Exception):
            raise self.receipt
        return self.receipt

    def get_transaction_receipt(self, tx_hash):
        if isinstance(self.receipt, Exception):
            raise self.receipt
        return self.receipt

    def get_transaction(self, tx_hash):
        if isinstance(self.receipt, Exception):
            raise self.receipt
        return {"hash": tx_hash}


@pytest.fixture
def fake_eth() -> FakeEth:
    return FakeEth()


@pytest.fixture
def web3_network(fake_eth) -> Web3Network:
    return Web3Network(
        "http://127.0.0.1:8545", web3=SimpleNamespace(eth=fake_eth), poll_interval_s=0
    )


class TestWeb3Network:
    def test_sign_then_broadcast(self, web3_network, fake_eth, accounts):
        signed = web3_network.sign(TransactionRequest(data=b"\x60\x80"), accounts[0])
        assert fake_eth.raw_transactions == []
        assert signed.nonce == 7
        assert signed.sender == DEPLOYER
        assert signed.tx_hash == Web3.to_hex(keccak(signed.raw_transaction))
        assert Account.recover_transaction(signed.raw_transaction) == DEPLOYER
        (estimated,) = fake_eth.estimated
        assert "to" not in estimated
        assert estimated["nonce"] == 7

        handle = web3_network.broadcast(signed)
        assert handle == signed.handle
        assert fake_eth.raw_transactions == [signed.raw_transaction]

    @pytest.mark.parametrize("reply", ["already known", "nonce too low: next nonce 8"])
    def test_broadcast_already_accepted(self, web3_network, fake_eth, accounts, reply):
        signed = web3_network.sign(TransactionRequest(data=b"\x60\x80"), accounts[0])
        fake_eth.send_error = Web3RPCError(f"{{'code': -32000, 'message': '{reply}'}}")
        assert web3_network.broadcast(signed) == signed.handle

    def test_broadcast_rejected(self, web3_network, fake_eth, accounts):
        signed = web3_network.sign(TransactionRequest(data=b"\x60\x80"), accounts[0])
        fake_eth.send_error = Web3RPCError("insufficient funds for gas * price + value")
        with pytest.raises(NetworkError, match="insufficient funds"):
            web3_network.broadcast(signed)

    def test_legacy_gas_pricing(self, fake_eth, accounts):
        network = Web3Network("http://x", supports_eip1559=False,
                              web3=SimpleNamespace(eth=fake_eth))
        assert network._gas_price() == {"gasPrice": 1_100}

    def test_eip1559_gas_pricing(self, web3_network):
        assert web3_network._gas_price() == {"maxFeePerGas": 202, "maxPriorityFeePerGas": 2}

    def test_confirmation(self, web3_network):
        receipt = web3_network.wait_for_confirmation(TxHandle(tx_hash="0x01"), 3)
        assert receipt.block_number == 10
        assert receipt.contract_address == OWNER
        assert receipt.tx_hash == "0x" + "01" * 32

    def test_reverted_receipt(self, web3_network, fake_eth):
        fake_eth.receipt = {**fake_eth.receipt, "status": 0, "contractAddress": None}
        with pytest.raises(RevertError):
            web3_network.wait_for_confirmation(TxHandle(tx_hash="0x01"), 1)

    def test_receipt_timeout_is_transient(self, web3_network, fake_eth):
        fake_eth.receipt = TimeExhausted("slow")
        with pytest.raises(TransientNetworkError):
            web3_network.wait_for_confirmation(TxHandle(tx_hash="0x01"), 1)

    def test_receipt_rpc_error_is_network_error(self, web3_network, fake_eth):
        fake_eth.receipt = Web3RPCError("header not found")
        with pytest.raises(NetworkError, match="header not found") as exc_info:
            web3_network.wait_for_confirmation(TxHandle(tx_hash="0x01"), 1)
        assert not isinstance(exc_info.value, TransientNetworkError)

    def test_depth_timeout_is_transient(self, fake_eth):
        network = Web3Network("http://x", timeout_s=0, poll_interval_s=0,
                              web3=SimpleNamespace(eth=fake_eth))
        with pytest.raises(TransientNetworkError, match="confirmations"):
            network.wait_for_confirmation(TxHandle(tx_hash="0x01"), 10)

    def test_unknown_transaction(self, web3_network, fake_eth):
        fake_eth.receipt = TransactionNotFound("missing")
        assert web3_network.get_receipt(TxHandle(tx_hash="0x01")) is None
        assert web3_network.is_known(TxHandle(tx_hash="0x01")) is False

    def test_rpc_error_mapping(self):
        def raising(exc):
            def call():
                raise exc
            return call

        with pytest.raises(TransientNetworkError):
            Web3Network._rpc(raising(ConnectionError("refused")))
        with pytest.raises(RevertError):
            Web3Network._rpc(raising(ContractLogicError("execution reverted: paused")))
        with pytest.raises(NetworkError, match="RPC rejected"):
            Web3Network._rpc(raising(ValueError("nonce too low")))


class LostReplyEth(FakeEth):
    """Keeps the first broadcast but loses the reply, like a read timeout.

    Later sends of the same bytes get the node's ``already known`` error.
    """

    def __init__(self) -> None:
        super().__init__()
        self.lost_replies = 1

    def send_raw_transaction(self, raw):
        known = bytes(raw) in self.raw_transactions
        self.raw_transactions.append(bytes(raw))
        if self.lost_replies:
            self.lost_replies -= 1
            raise ConnectionError("read timed out")
        if known:
            raise ValueError({"code": -32000, "message": "already known"})
        return keccak(bytes(raw))


class TestWeb3NetworkUnderEngine:
    """The engine driving Web3Network through RPC faults."""

    @staticmethod
    def _run(eth, journal, catalog, accounts):
        network = Web3Network("http://x", poll_interval_s=0, web3=SimpleNamespace(eth=eth))
        builder = ModuleBuilder("M")
        builder.library("Crypto")
        graph = ActionGraphBuilder([builder.build()]).build("M")
        engine = ExecutionEngine(
            network,
            journal,
            catalog,
            accounts,
            config=EngineConfig(confirmations=1, retry=RetryPolicy(max_attempts=3)),
            sleep=lambda _: None,
        )
        return engine.run("df-web3", TopologicalScheduler().schedule(graph))

    def test_lost_reply_resends_the_same_transaction(self, journal, catalog, accounts):
        eth = LostReplyEth()
        result = self._run(eth, journal, catalog, accounts)

        assert result.addresses() == {"M#Crypto": OWNER}
        assert len(eth.raw_transactions) == 2
        assert len(set(eth.raw_transactions)) == 1
        assert journal.get("df-web3", "M#Crypto").is_completed

    def test_receipt_rpc_error_is_journaled(self, fake_eth, journal, catalog, accounts):
        fake_eth.receipt = Web3RPCError("header not found")
        with pytest.raises(ExecutionError, match="header not found") as exc_info:
            self._run(fake_eth, journal, catalog, accounts)

        assert exc_info.value.action_id == "M#Crypto"
        record = journal.get("df-web3", "M#Crypto")
        assert record.status == ActionStatus.FAILED
        assert record.tx_hash == Web3.to_hex(keccak(fake_eth.raw_transactions[0]))


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class TestAccountSet:
    def test_dev_keys(self, accounts):
        assert len(accounts) == 2
        assert accounts.addresses[0] == DEPLOYER
        assert accounts[AccountRef(index=1)].address == OWNER

    def test_blank_keys_skipped(self):
        accounts = AccountSet.from_private_keys(["", "  ", HARDHAT_DEV_KEYS[0]])
        assert accounts.addresses == [DEPLOYER]

    def test_invalid_key(self):
        with pytest.raises(ConfigurationError, match="#1"):
            AccountSet.from_private_keys([HARDHAT_DEV_KEYS[0], "0x1234"])

    def test_index_out_of_range(self, accounts):
        with pytest.raises(ConfigurationError, match="only 2 signing accounts"):
            accounts[2]


# ---------------------------------------------------------------------------
# Artifact catalog
# ---------------------------------------------------------------------------


class TestArtifactCatalog:
    def test_from_directory(self, artifacts_dir):
        catalog = ArtifactCatalog.from_directory(artifacts_dir)
        assert len(catalog) == len(ARTIFACTS)
        assert "Vault" in catalog
        assert catalog.get("Vault").required_libraries() == ["contracts/Crypto.sol:Crypto"]
        assert "contracts/Proxy.sol:Proxy" in catalog.names()

    def test_skips_non_artifacts(self, artifacts_dir):
        (artifacts_dir / "build-info").mkdir()
        (artifacts_dir / "build-info" / "x.json").write_text(json.dumps({"input": {}}))
        (artifacts_dir / "broken.json").write_text("{not json")
        catalog = ArtifactCatalog.from_directory(artifacts_dir)
        assert len(catalog) == len(ARTIFACTS)

    def test_contract_name_defaults_to_file_stem(self, tmp_dir):
        (tmp_dir / "Token.json").write_text(json.dumps({"abi": [], "bytecode": "6001"}))
        catalog = ArtifactCatalog.from_directory(tmp_dir)
        assert catalog.get("Token").bytecode == "0x6001"

    def test_malformed_artifact(self, tmp_dir):
        (tmp_dir / "Bad.json").write_text(json.dumps({"abi": "not-a-list"}))
        with pytest.raises(ConfigurationError, match="Malformed artifact"):
            ArtifactCatalog.from_directory(tmp_dir)

    def test_missing_directory(self, tmp_dir):
        with pytest.raises(ConfigurationError, match="not found"):
            ArtifactCatalog.from_directory(tmp_dir / "nope")

    def test_unknown_contract(self, catalog):
        with pytest.raises(ConfigurationError, match="No compiled artifact"):
            catalog.get("Nope")

    def test_ambiguous_short_name(self, catalog):
        catalog.add(
            ContractInterface(contract_name="Vault", source_name="contracts/v2/Vault.sol")
        )
        assert "Vault" not in catalog
        with pytest.raises(ConfigurationError, match="ambiguous"):
            catalog.get("Vault")
        assert catalog.get("contracts/v2/Vault.sol:Vault").source_name == "contracts/v2/Vault.sol"
