"""Shared test fixtures for deployforge."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from deployforge.core.engine import ExecutionEngine
from deployforge.core.journal import StateJournal
from deployforge.models.config import EngineConfig, RetryPolicy
from deployforge.models.interfaces import ContractInterface
from deployforge.models.modules import (
    DeploymentDescription,
    DeploymentInputs,
    ModuleBuilder,
    ModuleDefinition,
)
from deployforge.network.accounts import HARDHAT_DEV_KEYS, AccountSet
from deployforge.network.catalog import ArtifactCatalog
from deployforge.network.simulated import SimulatedNetwork

OWNER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
ORACLE = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

# Library placeholder as emitted by solc: "__$" + 34 hex chars + "$__".
CRYPTO_PLACEHOLDER = "__$3f2c7b1d9e8a6b5c4d3e2f1a0b9c8d7e6f$__"

# Distinct creation-code prefixes make it easy to tell submissions apart.
CRYPTO_CODE = "0x60016002"
VAULT_CODE = "0x6080" + CRYPTO_PLACEHOLDER + "6000"
PROXY_CODE = "0x60606040"
REGISTRY_CODE = "0x60a0"


def _fn(name: str, *inputs: tuple[str, str], mutability: str = "nonpayable") -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [],
        "stateMutability": mutability,
    }


def _ctor(*inputs: tuple[str, str]) -> dict[str, Any]:
    return {
        "type": "constructor",
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "stateMutability": "nonpayable",
    }


ARTIFACTS: list[dict[str, Any]] = [
    {
        "contractName": "Crypto",
        "sourceName": "contracts/Crypto.sol",
        "abi": [],
        "bytecode": CRYPTO_CODE,
        "linkReferences": {},
    },
    {
        "contractName": "Vault",
        "sourceName": "contracts/Vault.sol",
        "abi": [
            _fn("initialize", ("owner", "address"), ("fee", "uint256")),
            _fn("setFee", ("fee", "uint256")),
            _fn("setOracle", ("oracle", "address")),
        ],
        "bytecode": VAULT_CODE,
        "linkReferences": {
            "contracts/Crypto.sol": {"Crypto": [{"start": 2, "length": 20}]},
        },
    },
    {
        "contractName": "Proxy",
        "sourceName": "contracts/Proxy.sol",
        "abi": [_ctor(("implementation", "address"), ("data", "bytes"))],
        "bytecode": PROXY_CODE,
        "linkReferences": {},
    },
    {
        "contractName": "Registry",
        "sourceName": "contracts/Registry.sol",
        "abi": [
            _ctor(("admin", "address")),
            _fn("register", ("entry", "address")),
            _fn("register", ("entry", "address"), ("weight", "uint256")),
            {
                "type": "function",
                "name": "configure",
                "inputs": [
                    {
                        "name": "settings",
                        "type": "tuple",
                        "components": [
                            {"name": "limit", "type": "uint256"},
                            {"name": "target", "type": "address"},
                        ],
                    }
                ],
                "outputs": [],
                "stateMutability": "nonpayable",
            },
        ],
        "bytecode": REGISTRY_CODE,
        "linkReferences": {},
    },
    {
        "contractName": "IOracle",
        "sourceName": "contracts/IOracle.sol",
        "abi": [_fn("latestAnswer", mutability="view")],
        "bytecode": "0x",
        "linkReferences": {},
    },
]


# ---------------------------------------------------------------------------
# Storage and catalog
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def journal(tmp_dir: Path) -> StateJournal:
    """Provide a fresh StateJournal backed by a temp SQLite database."""
    return StateJournal(tmp_dir / "journal.db")


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_dir: Path) -> Path:
    """Isolate settings from the caller's environment and any .env in the cwd."""
    monkeypatch.chdir(tmp_dir)
    for name in list(os.environ):
        if name.startswith("DEPLOYFORGE_"):
            monkeypatch.delenv(name)
    return tmp_dir


@pytest.fixture
def session_id() -> str:
    """Provide a deterministic test session ID."""
    return "df-test-session-001"


@pytest.fixture
def interfaces() -> dict[str, ContractInterface]:
    return {a["contractName"]: ContractInterface.model_validate(a) for a in ARTIFACTS}


@pytest.fixture
def catalog(interfaces: dict[str, ContractInterface]) -> ArtifactCatalog:
    return ArtifactCatalog(interfaces.values())


@pytest.fixture
def artifacts_dir(tmp_dir: Path) -> Path:
    """Write the test artifacts in Hardhat's directory layout."""
    root = tmp_dir / "artifacts"
    for artifact in ARTIFACTS:
        folder = root / artifact["sourceName"]
        folder.mkdir(parents=True, exist_ok=True)
        (folder / f"{artifact['contractName']}.json").write_text(json.dumps(artifact))
        (folder / f"{artifact['contractName']}.dbg.json").write_text(
            json.dumps({"_format": "hh-sol-dbg-1", "buildInfo": "../../build-info/x.json"})
        )
    return root


# ---------------------------------------------------------------------------
# Network and engine
# ---------------------------------------------------------------------------


@pytest.fixture
def accounts() -> AccountSet:
    return AccountSet.from_private_keys(HARDHAT_DEV_KEYS)


@pytest.fixture
def network() -> SimulatedNetwork:
    return SimulatedNetwork()


@pytest.fixture
def inputs() -> DeploymentInputs:
    return DeploymentInputs(external_addresses={"owner": OWNER, "oracle": ORACLE})


@pytest.fixture
def sleeps() -> list[float]:
    """Collects backoff delays instead of sleeping."""
    return []


@pytest.fixture
def make_engine(
    network: SimulatedNetwork,
    journal: StateJournal,
    catalog: ArtifactCatalog,
    accounts: AccountSet,
    inputs: DeploymentInputs,
    sleeps: list[float],
) -> Callable[..., ExecutionEngine]:
    """Factory fixture: an engine wired to the simulated network."""

    def _factory(**overrides: Any) -> ExecutionEngine:
        defaults: dict[str, Any] = {
            "inputs": inputs,
            "config": EngineConfig(
                confirmations=2, retry=RetryPolicy(max_attempts=3, base_delay_s=0.1)
            ),
            "sleep": sleeps.append,
        }
        defaults.update(overrides)
        return ExecutionEngine(network, journal, catalog, accounts, **defaults)

    return _factory


# ---------------------------------------------------------------------------
# Module definitions
# ---------------------------------------------------------------------------


def build_vault_modules() -> tuple[ModuleDefinition, ModuleDefinition, ModuleDefinition]:
    """Library L, contract C linked to L, proxy P fronting C.

    P's constructor receives C's address and ``initialize(owner, 100)``
    encoded against C's interface.
    """
    a = ModuleBuilder("CryptoModule")
    a.library("Crypto")
    crypto_module = a.build()

    b = ModuleBuilder("VaultModule")
    libs = b.use(crypto_module)
    b.contract("Vault", libraries={"Crypto": libs.Crypto})
    vault_module = b.build()

    c = ModuleBuilder("ProxyModule")
    vault = c.use(vault_module).Vault
    init = c.encode_call(vault, "initialize", [c.external("owner"), 100])
    c.contract("Proxy", [vault, init])
    proxy_module = c.build()

    return crypto_module, vault_module, proxy_module


@pytest.fixture
def vault_modules() -> tuple[ModuleDefinition, ModuleDefinition, ModuleDefinition]:
    return build_vault_modules()


@pytest.fixture
def vault_description(vault_modules) -> DeploymentDescription:
    return DeploymentDescription(modules=vault_modules, roots=("ProxyModule",))


@pytest.fixture
def description_json() -> dict[str, Any]:
    """The L -> C -> P deployment as a JSON description."""
    return {
        "roots": ["ProxyModule"],
        "modules": [
            {
                "id": "CryptoModule",
                "actions": [
                    {"kind": "deploy_library", "id": "Crypto", "library_name": "Crypto"},
                ],
            },
            {
                "id": "VaultModule",
                "depends_on": ["CryptoModule"],
                "actions": [
                    {
                        "kind": "deploy_contract",
                        "id": "Vault",
                        "contract_name": "Vault",
                        "libraries": {"Crypto": {"ref": "CryptoModule#Crypto"}},
                    },
                ],
            },
            {
                "id": "ProxyModule",
                "depends_on": ["VaultModule"],
                "actions": [
                    {
                        "kind": "deploy_contract",
                        "id": "Proxy",
                        "contract_name": "Proxy",
                        "args": [
                            {"ref": "VaultModule#Vault"},
                            {
                                "encode": {
                                    "target": {"ref": "VaultModule#Vault"},
                                    "function": "initialize",
                                    "args": [{"external": "owner"}, 100],
                                }
                            },
                        ],
                    },
                    {
                        "kind": "reference_existing",
                        "id": "ProxiedVault",
                        "contract_name": "Vault",
                        "address": {"ref": "ProxyModule#Proxy"},
                    },
                    {
                        "kind": "call",
                        "id": "ProxiedVault.setOracle",
                        "target": {"ref": "ProxyModule#ProxiedVault"},
                        "function": "setOracle",
                        "args": [{"external": "oracle"}],
                    },
                ],
            },
        ],
    }
