"""Known network presets: chain ids and public RPC endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class NetworkPreset(BaseModel):
    """Chain id and RPC endpoint template for a named network.

    ``rpc_url`` may contain ``{infura_api_key}``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    chain_id: int
    rpc_url: str
    supports_eip1559: bool = True

    @property
    def needs_infura_key(self) -> bool:
        return "{infura_api_key}" in self.rpc_url


def _infura(name: str, chain_id: int) -> NetworkPreset:
    return NetworkPreset(
        name=name,
        chain_id=chain_id,
        rpc_url=f"https://{name}.infura.io/v3/{{infura_api_key}}",
    )


NETWORK_PRESETS: dict[str, NetworkPreset] = {
    p.name: p
    for p in [
        NetworkPreset(name="hardhat", chain_id=31337, rpc_url="http://127.0.0.1:8545"),
        _infura("mainnet", 1),
        _infura("goerli", 5),
        _infura("kovan", 42),
        _infura("rinkeby", 4),
        _infura("ropsten", 3),
        NetworkPreset(name="polygon", chain_id=137, rpc_url="https://polygon-rpc.com"),
        NetworkPreset(
            name="bsctestnet",
            chain_id=97,
            rpc_url="https://bsc-testnet-rpc.publicnode.com",
            supports_eip1559=False,
        ),
        NetworkPreset(
            name="bsc",
            chain_id=56,
            rpc_url="https://bsc-dataseed.binance.org/",
            supports_eip1559=False,
        ),
        NetworkPreset(name="mumbai", chain_id=80001, rpc_url="https://rpc-mumbai.maticvigil.com/"),
        NetworkPreset(
            name="sepolia",
            chain_id=11155111,
            rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        ),
        NetworkPreset(
            name="bitlayertestnet",
            chain_id=200810,
            rpc_url="https://testnet-rpc.bitlayer.org",
            supports_eip1559=False,
        ),
        NetworkPreset(
            name="seidevnet",
            chain_id=713715,
            rpc_url="https://evm-rpc.arctic-1.seinetwork.io",
        ),
    ]
}
