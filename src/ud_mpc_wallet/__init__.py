"""
UD MPC Wallet core

Attaches a device to a custodial 2-party MPC wallet, signs messages and
moves assets through the Wallets API, and sends native coins and ERC-20
tokens from locally held or WalletConnect-linked wallets.

Example:
    >>> from ud_mpc_wallet import MPCConnectionService, MPCActivateCredentials
    >>>
    >>> service = MPCConnectionService(builder, network, storage, wallets, ui_handler)
    >>> async for step in service.setup_mpc_wallet_with("123456", MPCActivateCredentials(email, phrase)):
    ...     print(step.stage)
    >>>
    >>> # Local wallet transfer
    >>> sender = CryptoSender(wallet, JrpcClient(), JrpcGasPriceOracle(JrpcClient()))
    >>> spec = CryptoSendingSpec.from_units(SupportedToken.ETH, "0.01")
    >>> tx_hash = await sender.send_crypto(spec, ChainSpec(BlockchainType.ETHEREUM), "0x...")
"""

from .amounts import EVMTokenAmount, ERC20TokenAmount, EstimatedGasPrices, TxSpeed
from .chains import BlockchainEnvironment, BlockchainType, ChainSpec, EvmChainConfig, EVM_CHAINS
from .config import PollingConfig, ServiceConfig, WalletsApiConfig
from .gas import GasPriceOracle, InfuraGasPriceOracle, JrpcGasPriceOracle
from .jrpc import EvmTransaction, JrpcClient
from .logger import get_logger, setup_logging
from .mpc import (
    DefaultFireblocksConnectorBuilder,
    FileSystemStore,
    FireblocksConnector,
    KeyShareStorage,
    MemoryStore,
    MPCActivateCredentials,
    MPCConnectionNetworkService,
    MPCConnectionService,
    MPCWalletsDataStorage,
    SetupMPCWalletStep,
    SetupStage,
)
from .sender import CryptoSender, CryptoSendingSpec, ExternalSignerBridge, SupportedToken
from .types import (
    ApiError,
    BootstrapError,
    ConnectorError,
    CryptoSenderError,
    ErrorCode,
    ExternalSignerError,
    JrpcError,
    MPCConnectionServiceError,
    MPCNetworkError,
    StorageError,
    WalletError,
)
from .wallet import MPCWalletMetadata, MPCWalletProvider, Wallet, WalletsRegistry, WalletType

__version__ = "0.1.0"
__all__ = [
    # Amounts
    "EVMTokenAmount",
    "ERC20TokenAmount",
    "EstimatedGasPrices",
    "TxSpeed",
    # Chains
    "BlockchainEnvironment",
    "BlockchainType",
    "ChainSpec",
    "EvmChainConfig",
    "EVM_CHAINS",
    # Config
    "PollingConfig",
    "ServiceConfig",
    "WalletsApiConfig",
    # JSON-RPC & gas
    "EvmTransaction",
    "JrpcClient",
    "GasPriceOracle",
    "InfuraGasPriceOracle",
    "JrpcGasPriceOracle",
    # Logging
    "get_logger",
    "setup_logging",
    # MPC
    "DefaultFireblocksConnectorBuilder",
    "FileSystemStore",
    "FireblocksConnector",
    "KeyShareStorage",
    "MemoryStore",
    "MPCActivateCredentials",
    "MPCConnectionNetworkService",
    "MPCConnectionService",
    "MPCWalletsDataStorage",
    "SetupMPCWalletStep",
    "SetupStage",
    # Sending
    "CryptoSender",
    "CryptoSendingSpec",
    "ExternalSignerBridge",
    "SupportedToken",
    # Wallets
    "MPCWalletMetadata",
    "MPCWalletProvider",
    "Wallet",
    "WalletsRegistry",
    "WalletType",
    # Errors
    "ApiError",
    "BootstrapError",
    "ConnectorError",
    "CryptoSenderError",
    "ErrorCode",
    "ExternalSignerError",
    "JrpcError",
    "MPCConnectionServiceError",
    "MPCNetworkError",
    "StorageError",
    "WalletError",
]
