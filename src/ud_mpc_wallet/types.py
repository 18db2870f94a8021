"""Core type definitions and error taxonomy for the wallet core."""

from enum import IntEnum


class ErrorCode(IntEnum):
    """Error codes for wallet core operations."""

    # Transport
    NETWORK_ERROR = 1
    API_ERROR = 2
    INVALID_RESPONSE = 3
    UNSUPPORTED_CHAIN = 4

    # JSON-RPC client
    NONCE_FETCH_FAILED = 10
    GAS_FETCH_FAILED = 11
    LOW_ALLOWANCE = 12
    NO_PRIVATE_KEY = 13
    TX_SIGN_FAILED = 14
    SEND_FAILED = 15

    # Crypto sending
    SENDING_NOT_SUPPORTED = 20
    INVALID_ADDRESSES = 21
    FAILED_TO_FETCH_GAS_PRICE = 22
    TOKEN_NOT_SUPPORTED_ON_CHAIN = 23
    DECIMALS_NOT_IDENTIFIED = 24
    EXTERNAL_SIGN_TIMEOUT = 25
    EXTERNAL_SIGN_REJECTED = 26

    # MPC connector
    KEY_TIMEOUT = 30
    SIGN_TIMEOUT = 31
    JOIN_WALLET_TIMEOUT = 32
    JOIN_WALLET_FAILED = 33
    KEY_ACCESS_DENIED = 34

    # Wallets API
    INCORRECT_CODE = 40
    INCORRECT_PASSWORD = 41
    KEY_MATERIALS_TX_TIMEOUT = 42
    OPERATION_TIMEOUT = 43
    OPERATION_FAILED = 44
    MISSING_VENDOR_TX_ID = 45
    MISSING_SIGNATURE = 46
    MISSING_TX_HASH = 47
    COMPLETED_OPERATION_MISSING_RESULT = 48

    # MPC connection service
    TOKENS_EXPIRED = 50
    FAILED_TO_GET_ETH_ADDRESS = 51
    NO_ACCOUNTS_FOR_WALLET = 52
    INVALID_WALLET_METADATA = 53
    INCORRECT_OPERATION_STATE = 54
    MISSING_NETWORK_FEE = 55
    INVALID_NETWORK_FEE_AMOUNT_FORMAT = 56
    ASSET_NOT_FOUND = 57
    FAILED_TO_FIND_WALLET = 58
    BOOTSTRAP_FAILED = 59
    FAILED_TO_TRIM_AMOUNT = 60

    # Storage / wallets
    STORAGE_ERROR = 70
    WALLET_NOT_FOUND = 71

    UNKNOWN = 99


class WalletError(Exception):
    """Base exception for the wallet core."""

    def __init__(self, code: ErrorCode, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.code = code
        self.cause = cause


class JrpcError(WalletError):
    """Raised by the JSON-RPC client."""


class JrpcCallError(JrpcError):
    """RPC-level error object returned by a node."""

    def __init__(self, rpc_code: int | None, message: str):
        super().__init__(ErrorCode.API_ERROR, message)
        self.rpc_code = rpc_code


class CryptoSenderError(WalletError):
    """Raised while building or dispatching a transfer."""


class ExternalSignerError(WalletError):
    """Raised by the external (WalletConnect) signing bridge."""


class ConnectorError(WalletError):
    """Raised by the MPC connector."""


class ApiError(WalletError):
    """Non-2xx response from an HTTP API."""

    def __init__(self, status_code: int, message: str, body: bytes = b""):
        super().__init__(ErrorCode.API_ERROR, message)
        self.status_code = status_code
        self.body = body


class MPCNetworkError(WalletError):
    """Raised by the Wallets API client for domain-level failures."""


class MPCConnectionServiceError(WalletError):
    """Raised by the MPC connection service."""


class BootstrapError(MPCConnectionServiceError):
    """Bootstrap ceremony aborted at `step`."""

    def __init__(self, step: str, cause: Exception):
        super().__init__(
            ErrorCode.BOOTSTRAP_FAILED,
            f"MPC wallet bootstrap failed at step '{step}': {cause}",
            cause,
        )
        self.step = step


class StorageError(WalletError):
    """Raised by secure stores."""

