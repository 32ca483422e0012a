"""The fixed, externally supplied list of signing accounts."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from eth_account import Account
from eth_account.signers.local import LocalAccount

from deployforge.core.errors import ConfigurationError
from deployforge.models.artifacts import AccountRef


class AccountSet:
    """Ordered signing accounts built from private keys.

    Index 0 is the default deployer, matching ``getAccount(0)``.
    """

    def __init__(self, accounts: Iterable[LocalAccount]) -> None:
        self._accounts = list(accounts)

    @classmethod
    def from_private_keys(cls, private_keys: Iterable[str]) -> AccountSet:
        accounts = []
        for position, key in enumerate(private_keys):
            key = key.strip()
            if not key:
                continue
            try:
                accounts.append(Account.from_key(key))
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(f"Private key #{position} is invalid: {exc}") from exc
        return cls(accounts)

    def __getitem__(self, ref: int | AccountRef) -> LocalAccount:
        index = ref.index if isinstance(ref, AccountRef) else ref
        if index < 0 or index >= len(self._accounts):
            raise ConfigurationError(
                f"Account index {index} requested but only "
                f"{len(self._accounts)} signing accounts are configured"
            )
        return self._accounts[index]

    def __len__(self) -> int:
        return len(self._accounts)

    def __iter__(self) -> Iterator[LocalAccount]:
        return iter(self._accounts)

    @property
    def addresses(self) -> list[str]:
        return [a.address for a in self._accounts]


# Publicly known development keys of the Hardhat network (accounts #0 and #1).
# Only used for the local ``hardhat`` network when no keys are configured.
HARDHAT_DEV_KEYS = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
    "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
)
