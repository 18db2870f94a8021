"""Wallet records and the wallet management layer."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from .types import ErrorCode, WalletError
from .logger import get_logger

logger = get_logger(__name__)


class WalletType(str, Enum):
    """How a wallet signs."""

    LOCAL = "local"  # private key held on this device
    EXTERNAL_LINKED = "external_linked"  # signs through WalletConnect
    MPC = "mpc"  # key shares split with a custody service


class MPCWalletProvider(str, Enum):
    """MPC custody providers."""

    FIREBLOCKS_UD = "fireblocks_ud"


@dataclass(frozen=True)
class MPCWalletMetadata:
    """Provider tag plus opaque serialized metadata identifying the MPC device."""

    provider: MPCWalletProvider
    metadata: bytes | None = None

    def decode(self) -> dict[str, Any]:
        """Decode the metadata blob."""
        if not self.metadata:
            raise WalletError(ErrorCode.INVALID_WALLET_METADATA, "MPC wallet metadata is empty")
        try:
            return json.loads(self.metadata)
        except ValueError as e:
            raise WalletError(
                ErrorCode.INVALID_WALLET_METADATA, "MPC wallet metadata is not valid JSON", e
            ) from e


@dataclass
class Wallet:
    """
    A user wallet.

    Example:
        >>> wallet = Wallet(address="0xabc...", type=WalletType.LOCAL, private_key="0x...")
        >>> wallet.has_private_key
        True
    """

    address: str
    type: WalletType
    alias_name: str = ""
    private_key: str | None = field(default=None, repr=False)
    mpc_metadata: MPCWalletMetadata | None = None

    @property
    def has_private_key(self) -> bool:
        """Check if the wallet can sign locally."""
        return bool(self.private_key)

    @property
    def is_external(self) -> bool:
        """Check if signing is delegated to an external wallet."""
        return self.type == WalletType.EXTERNAL_LINKED

    def extract_mpc_metadata(self) -> MPCWalletMetadata:
        """Get MPC metadata or fail."""
        if self.mpc_metadata is None:
            raise WalletError(ErrorCode.INVALID_WALLET_METADATA, f"Wallet {self.address} is not an MPC wallet")
        return self.mpc_metadata


class WalletsListener(Protocol):
    """Receives wallet removal notifications."""

    def wallet_removed(self, wallet: Wallet) -> None:
        ...


class WalletsRegistry:
    """
    In-process wallet management layer.

    Holds the user's wallets and notifies listeners when one is removed.
    """

    def __init__(self, wallets: list[Wallet] | None = None) -> None:
        self._wallets: dict[str, Wallet] = {}
        self._listeners: list[WalletsListener] = []
        for wallet in wallets or []:
            self._wallets[wallet.address.lower()] = wallet

    def add_listener(self, listener: WalletsListener) -> None:
        """Register a removal listener."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def get_user_wallets(self) -> list[Wallet]:
        """Get all wallets."""
        return list(self._wallets.values())

    def find_wallet(self, address: str) -> Wallet | None:
        """Find a wallet by address."""
        return self._wallets.get(address.lower())

    def create_mpc_wallet(self, eth_address: str, mpc_metadata: MPCWalletMetadata) -> Wallet:
        """
        Register an MPC wallet.

        Reconnecting an already known MPC wallet replaces its metadata.
        """
        existing = self.find_wallet(eth_address)
        if existing is not None and existing.type != WalletType.MPC:
            raise WalletError(
                ErrorCode.STORAGE_ERROR,
                f"Wallet {eth_address} already exists with type {existing.type.value}",
            )

        wallet = Wallet(
            address=eth_address,
            type=WalletType.MPC,
            alias_name=existing.alias_name if existing else "",
            mpc_metadata=mpc_metadata,
        )
        self._wallets[eth_address.lower()] = wallet
        logger.info(f"Registered MPC wallet {eth_address}")
        return wallet

    def remove_wallet(self, wallet: Wallet) -> None:
        """Remove a wallet and notify listeners."""
        removed = self._wallets.pop(wallet.address.lower(), None)
        if removed is None:
            raise WalletError(ErrorCode.WALLET_NOT_FOUND, f"Wallet {wallet.address} not found")

        for listener in list(self._listeners):
            listener.wallet_removed(removed)
