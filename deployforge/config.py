"""Runtime configuration, environment driven.

Centralized settings using pydantic-settings. Reads from a .env file and
DEPLOYFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from deployforge.core.errors import ConfigurationError
from deployforge.models.config import EngineConfig, RetryPolicy
from deployforge.models.networks import NETWORK_PRESETS, NetworkPreset
from deployforge.network.accounts import HARDHAT_DEV_KEYS


class DeployConfig(BaseSettings):
    """Deployment settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export DEPLOYFORGE_NETWORK=sepolia
        export DEPLOYFORGE_INFURA_API_KEY=...
        export DEPLOYFORGE_DEPLOYER_PRIVATE_KEY=0x...

    Or via .env file::

        DEPLOYFORGE_NETWORK=bsctestnet
        DEPLOYFORGE_CONFIRMATIONS=5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEPLOYFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    journal_path: Path = Path(".deployforge/journal.db")
    artifacts_path: Path = Path("artifacts")

    # Target network
    network: str = "hardhat"
    rpc_url: str = ""  # overrides the preset endpoint
    chain_id: int | None = None  # overrides the preset chain id
    infura_api_key: str = ""

    # Signing accounts: the deployer key is account 0, then private_keys
    # (comma separated) in order.
    deployer_private_key: str = Field(default="", repr=False)
    private_keys: str = Field(default="", repr=False)

    # Execution policy
    confirmations: int = 3
    max_retries: int = 3
    retry_base_delay_s: float = 0.5
    retry_max_delay_s: float = 30.0
    tx_timeout_seconds: int = 300
    poll_interval_seconds: float = 1.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def signing_keys(self) -> list[str]:
        keys = [self.deployer_private_key] if self.deployer_private_key else []
        keys.extend(k.strip() for k in self.private_keys.split(",") if k.strip())
        return keys

    @property
    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            confirmations=self.confirmations,
            retry=RetryPolicy(
                max_attempts=self.max_retries,
                base_delay_s=self.retry_base_delay_s,
                max_delay_s=self.retry_max_delay_s,
            ),
        )

    def preset(self) -> NetworkPreset | None:
        return NETWORK_PRESETS.get(self.network)

    def resolve_rpc_url(self) -> str:
        """Endpoint for the configured network.

        Raises ``ConfigurationError`` for an unknown network without an
        explicit URL, or an Infura endpoint without an API key.
        """
        if self.rpc_url:
            return self.rpc_url
        preset = self.preset()
        if preset is None:
            raise ConfigurationError(
                f"Unknown network {self.network!r}; set DEPLOYFORGE_RPC_URL "
                f"or use one of: {', '.join(sorted(NETWORK_PRESETS))}"
            )
        if preset.needs_infura_key and not self.infura_api_key:
            raise ConfigurationError(
                f"Network {self.network!r} needs DEPLOYFORGE_INFURA_API_KEY"
            )
        return preset.rpc_url.format(infura_api_key=self.infura_api_key)

    def expected_chain_id(self) -> int | None:
        if self.chain_id is not None:
            return self.chain_id
        preset = self.preset()
        return preset.chain_id if preset else None


def enforce_production_constraints(config: DeployConfig, *, simulate: bool = False) -> None:
    """Refuse settings that must never reach a production deployment.

    A no-op unless ``config.is_production``. All violations are reported
    together in one ``ConfigurationError``.

    Constraints enforced
    --------------------
    1. No simulated chain.
    2. No local ``hardhat`` network.
    3. None of the publicly known Hardhat development keys.
    """
    if not config.is_production:
        return

    violations: list[str] = []
    if simulate:
        violations.append("--simulate is not allowed in production")
    if config.network == "hardhat":
        violations.append(
            "the local hardhat network is not allowed in production; set DEPLOYFORGE_NETWORK"
        )
    dev_keys = {k.lower() for k in HARDHAT_DEV_KEYS}
    if any(key.lower() in dev_keys for key in config.signing_keys):
        violations.append("a Hardhat development key is configured as a signing key")

    if violations:
        raise ConfigurationError(
            "Production constraints violated:\n" + "\n".join(f"  - {v}" for v in violations)
        )
