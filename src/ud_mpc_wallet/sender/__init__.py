"""Native coin and token sending."""

from .crypto_sender import CryptoSender
from .evm import EVMCryptoSender, NativeCoinSender, TokenSender, encode_erc20_transfer
from .external import ExternalSignerBridge, WalletConnectTransport
from .tokens import CryptoSendingSpec, SupportedToken, TokenContract, TOKEN_CONTRACTS

__all__ = [
    "CryptoSender",
    "EVMCryptoSender",
    "NativeCoinSender",
    "TokenSender",
    "encode_erc20_transfer",
    "ExternalSignerBridge",
    "WalletConnectTransport",
    "CryptoSendingSpec",
    "SupportedToken",
    "TokenContract",
    "TOKEN_CONTRACTS",
]
