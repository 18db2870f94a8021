"""EVM chain definitions."""

from dataclasses import dataclass
from enum import Enum

from ..types import ErrorCode, WalletError


class BlockchainType(str, Enum):
    """Supported EVM blockchains (value is the Wallets API chain code)."""

    ETHEREUM = "ETH"
    MATIC = "MATIC"
    BASE = "BASE"


class BlockchainEnvironment(str, Enum):
    """Blockchain environment."""

    MAINNET = "mainnet"
    TESTNET = "testnet"


# (mainnet, testnet) chain ids
_CHAIN_IDS: dict[BlockchainType, tuple[int, int]] = {
    BlockchainType.ETHEREUM: (1, 11155111),  # sepolia
    BlockchainType.MATIC: (137, 80002),  # amoy
    BlockchainType.BASE: (8453, 84532),  # base sepolia
}


@dataclass(frozen=True)
class ChainSpec:
    """Blockchain type + environment, resolves to a numeric chain id."""

    blockchain_type: BlockchainType
    env: BlockchainEnvironment = BlockchainEnvironment.MAINNET

    @property
    def id(self) -> int:
        """Get chain ID."""
        mainnet, testnet = _CHAIN_IDS[self.blockchain_type]
        return mainnet if self.env == BlockchainEnvironment.MAINNET else testnet


@dataclass
class EvmChainConfig:
    """EVM chain configuration."""

    chain_id: int
    name: str
    rpc_urls: list[str]
    symbol: str
    decimals: int = 18
    explorer_url: str | None = None


# Pre-configured chain configs, keyed by chain id
EVM_CHAINS: dict[int, EvmChainConfig] = {
    1: EvmChainConfig(
        chain_id=1,
        name="Ethereum Mainnet",
        rpc_urls=["https://eth.llamarpc.com", "https://rpc.ankr.com/eth"],
        symbol="ETH",
        explorer_url="https://etherscan.io",
    ),
    11155111: EvmChainConfig(
        chain_id=11155111,
        name="Ethereum Sepolia",
        rpc_urls=["https://sepolia.drpc.org", "https://rpc.ankr.com/eth_sepolia"],
        symbol="ETH",
        explorer_url="https://sepolia.etherscan.io",
    ),
    137: EvmChainConfig(
        chain_id=137,
        name="Polygon",
        rpc_urls=["https://polygon-rpc.com", "https://rpc.ankr.com/polygon"],
        symbol="MATIC",
        explorer_url="https://polygonscan.com",
    ),
    80002: EvmChainConfig(
        chain_id=80002,
        name="Polygon Amoy",
        rpc_urls=["https://rpc-amoy.polygon.technology"],
        symbol="MATIC",
        explorer_url="https://amoy.polygonscan.com",
    ),
    8453: EvmChainConfig(
        chain_id=8453,
        name="Base",
        rpc_urls=["https://mainnet.base.org", "https://base.llamarpc.com"],
        symbol="ETH",
        explorer_url="https://basescan.org",
    ),
    84532: EvmChainConfig(
        chain_id=84532,
        name="Base Sepolia",
        rpc_urls=["https://sepolia.base.org"],
        symbol="ETH",
        explorer_url="https://sepolia.basescan.org",
    ),
}


def get_chain_config(
    chain_id: int, chains: dict[int, EvmChainConfig] | None = None
) -> EvmChainConfig:
    """Resolve the config (and so the RPC providers) for a chain id."""
    chains = EVM_CHAINS if chains is None else chains
    try:
        return chains[chain_id]
    except KeyError:
        raise WalletError(
            ErrorCode.UNSUPPORTED_CHAIN, f"No RPC provider for chain id {chain_id}"
        ) from None
