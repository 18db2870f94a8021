"""Chain definitions for EVM support."""

from .evm import (
    BlockchainEnvironment,
    BlockchainType,
    ChainSpec,
    EvmChainConfig,
    EVM_CHAINS,
    get_chain_config,
)

__all__ = [
    "BlockchainEnvironment",
    "BlockchainType",
    "ChainSpec",
    "EvmChainConfig",
    "EVM_CHAINS",
    "get_chain_config",
]
