"""MPC custody: device bootstrap, signing and transfers through the Wallets API."""

from .connector import (
    DefaultFireblocksConnectorBuilder,
    FireblocksConnector,
    FireblocksConnectorBuilder,
    KeyAlgorithm,
    KeyDescriptor,
    KeyStatus,
    MPCConnector,
    MPCSdk,
    RPCMessageRelay,
    SignatureStatus,
)
from .entities import (
    AuthTokens,
    ConnectedWalletDetails,
    JWToken,
    MPCActivateCredentials,
    MPCWalletReconnectData,
    SetupMPCWalletStep,
    SetupStage,
    UDWalletMetadata,
    WalletTokenPortfolio,
)
from .network import MPCConnectionNetworkService
from .queuer import ActionsQueuer
from .service import MPCConnectionService, MPCWalletsUIHandler
from .storage import (
    FileSystemStore,
    KeyShareStorage,
    MemoryStore,
    MPCWalletsDataStorage,
    SecureStore,
)

__all__ = [
    "DefaultFireblocksConnectorBuilder",
    "FireblocksConnector",
    "FireblocksConnectorBuilder",
    "KeyAlgorithm",
    "KeyDescriptor",
    "KeyStatus",
    "MPCConnector",
    "MPCSdk",
    "RPCMessageRelay",
    "SignatureStatus",
    "AuthTokens",
    "ConnectedWalletDetails",
    "JWToken",
    "MPCActivateCredentials",
    "MPCWalletReconnectData",
    "SetupMPCWalletStep",
    "SetupStage",
    "UDWalletMetadata",
    "WalletTokenPortfolio",
    "MPCConnectionNetworkService",
    "ActionsQueuer",
    "MPCConnectionService",
    "MPCWalletsUIHandler",
    "FileSystemStore",
    "KeyShareStorage",
    "MemoryStore",
    "MPCWalletsDataStorage",
    "SecureStore",
]
