"""Wallets API payloads and MPC wallet entities."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from eth_utils import is_hex_address
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..types import ErrorCode, MPCConnectionServiceError
from ..wallet import Wallet


class ApiModel(BaseModel):
    """Base for camelCase Wallets API payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ============================================================================
# Tokens
# ============================================================================


def decode_jwt_expiry(token: str) -> datetime:
    """Read the `exp` claim of a JWT without verifying it."""
    try:
        claims = jwt.get_unverified_claims(token)
        return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
    except (JWTError, KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Token has no readable expiry: {e}") from e


class JWToken(ApiModel):
    """JWT plus its expiry. Validates from a bare JWT string."""

    jwt: str
    expires_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _from_raw_jwt(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"jwt": data, "expires_at": decode_jwt_expiry(data)}
        return data

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the token is past its expiry."""
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


class AuthTokens(ApiModel):
    """Access / refresh / bootstrap tokens for one device."""

    access_token: JWToken
    refresh_token: JWToken
    bootstrap_token: JWToken


class BootstrapCodeSubmitResponse(ApiModel):
    access_token: str
    device_id: str


class RefreshBootstrapTokenResponse(ApiModel):
    access_token: str
    device_id: str


class SetupTokenResponse(ApiModel):
    """Key-material transaction opened to prove the new device's keys."""

    transaction_id: str
    status: str  # QUEUED | PENDING_SIGNATURE | COMPLETED | UNKNOWN

    @property
    def is_ready(self) -> bool:
        return self.status == "PENDING_SIGNATURE"


class APIBadResponse(ApiModel):
    """Error body returned by the Wallets API."""

    code: str
    message: str | None = None

    @property
    def is_invalid_code_response(self) -> bool:
        return self.code == "INVALID_CODE"

    @property
    def is_processing(self) -> bool:
        return self.code == OperationStatus.PROCESSING.value

    @classmethod
    def from_body(cls, body: bytes) -> "APIBadResponse | None":
        """Parse an error body, None when it isn't one."""
        try:
            return cls.model_validate_json(body)
        except ValueError:
            return None


# ============================================================================
# Accounts & assets
# ============================================================================


class WalletAccount(ApiModel):
    type: str
    id: str


class WalletAccountsResponse(ApiModel):
    items: list[WalletAccount]


class BlockchainInfo(ApiModel):
    id: str
    name: str


class BlockchainAsset(ApiModel):
    id: str
    name: str
    symbol: str
    blockchain: BlockchainInfo


class AssetBalance(ApiModel):
    total: str
    decimals: int | None = None


class WalletAccountAsset(ApiModel):
    type: str
    id: str
    address: str
    blockchain_asset: BlockchainAsset
    balance: AssetBalance | None = None

    @property
    def chain_code(self) -> str:
        return self.blockchain_asset.blockchain.id.upper()


class WalletAccountAssetsResponse(ApiModel):
    items: list[WalletAccountAsset]


class WalletAccountWithAssets(ApiModel):
    """Account with its per-chain assets."""

    type: str
    id: str
    assets: list[WalletAccountAsset] = Field(default_factory=list)

    @classmethod
    def create(cls, account: WalletAccount, assets: list[WalletAccountAsset]) -> "WalletAccountWithAssets":
        return cls(type=account.type, id=account.id, assets=assets)

    def find_asset(self, symbol: str, chain: str) -> WalletAccountAsset | None:
        """Find the asset for a token symbol on a chain code."""
        for asset in self.assets:
            if asset.blockchain_asset.symbol.upper() == symbol.upper() and asset.chain_code == chain.upper():
                return asset
        return None

    def get_asset_with(self, symbol: str, chain: str) -> WalletAccountAsset:
        asset = self.find_asset(symbol, chain)
        if asset is None:
            raise MPCConnectionServiceError(
                ErrorCode.ASSET_NOT_FOUND, f"No {symbol} asset on {chain} in account {self.id}"
            )
        return asset

    def get_asset_to_sign_with(self, chain: str) -> WalletAccountAsset:
        """Any asset living on the chain can sign for it; the native one is preferred."""
        candidates = [asset for asset in self.assets if asset.chain_code == chain.upper()]
        if not candidates:
            raise MPCConnectionServiceError(
                ErrorCode.ASSET_NOT_FOUND, f"No asset on {chain} in account {self.id}"
            )
        for asset in candidates:
            if asset.blockchain_asset.symbol.upper() == chain.upper():
                return asset
        return candidates[0]

    def can_send_crypto_to(self, symbol: str, chain: str) -> bool:
        return self.find_asset(symbol, chain) is not None


class WalletTokenPortfolio(ApiModel):
    """Balance entry returned by the portfolio endpoint."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    address: str
    symbol: str
    name: str | None = None
    gas_currency: str | None = None
    blockchain_scan_url: str | None = None
    balance_amt: float = 0.0
    total_value_usd: str | None = None
    logo_url: str | None = None


# ============================================================================
# Operations
# ============================================================================


class OperationStatus(str, Enum):
    QUEUED = "QUEUED"
    SIGNATURE_REQUIRED = "SIGNATURE_REQUIRED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class OperationTransaction(ApiModel):
    id: str | None = None
    external_vendor_transaction_id: str | None = None


class OperationResult(ApiModel):
    signature: str | None = None


class OperationDetails(ApiModel):
    """Server-side signing or transfer operation."""

    id: str
    status: str
    type: str | None = None
    transaction: OperationTransaction | None = None
    result: OperationResult | None = None


@dataclass(frozen=True)
class TxReady:
    """Operation waits for the device's co-signature of `tx_id`."""

    tx_id: str


@dataclass(frozen=True)
class Signed:
    """Operation finished with a signature."""

    signature: str


@dataclass(frozen=True)
class Finished:
    """Operation finished with an on-chain transaction."""

    tx_hash: str


OperationReadyResponse = Union[TxReady, Signed, Finished]


class NetworkFee(ApiModel):
    amount: str
    symbol: str | None = None


class NetworkFeeResponse(ApiModel):
    priority: str | None = None
    status: str | None = None
    network_fee: NetworkFee | None = None


class SignMessageEncoding(str, Enum):
    UTF8 = "utf8"
    HEX = "hex"


@dataclass(frozen=True)
class MessageSigningType:
    """Personal sign with an encoding, or EIP-712 typed data."""

    typed_data: bool = False
    encoding: SignMessageEncoding = SignMessageEncoding.UTF8

    @classmethod
    def personal_sign(cls, encoding: SignMessageEncoding) -> "MessageSigningType":
        return cls(typed_data=False, encoding=encoding)

    @classmethod
    def typed(cls) -> "MessageSigningType":
        return cls(typed_data=True, encoding=SignMessageEncoding.HEX)


# ============================================================================
# Connected wallet
# ============================================================================


class UDWalletMetadata(ApiModel):
    """Serialized into `MPCWalletMetadata.metadata`."""

    email: str
    device_id: str


class WalletAccountsDetails(ApiModel):
    """Persisted account listing for a device."""

    email: str
    device_id: str
    first_account: WalletAccountWithAssets
    accounts: list[WalletAccountWithAssets]


class ConnectedWalletDetails(ApiModel):
    """Everything needed to act on behalf of a bootstrapped device."""

    email: str
    device_id: str
    tokens: AuthTokens
    first_account: WalletAccountWithAssets
    accounts: list[WalletAccountWithAssets]

    @classmethod
    def from_stored(cls, details: WalletAccountsDetails, tokens: AuthTokens) -> "ConnectedWalletDetails":
        return cls(
            email=details.email,
            device_id=details.device_id,
            tokens=tokens,
            first_account=details.first_account,
            accounts=details.accounts,
        )

    def create_wallet_accounts_details(self) -> WalletAccountsDetails:
        return WalletAccountsDetails(
            email=self.email,
            device_id=self.device_id,
            first_account=self.first_account,
            accounts=self.accounts,
        )

    def get_eth_wallet_address(self) -> str | None:
        """Address of the first account's Ethereum asset."""
        for asset in self.first_account.assets:
            if asset.chain_code == "ETH" and is_hex_address(asset.address):
                return asset.address
        return None


@dataclass(frozen=True)
class MPCActivateCredentials:
    email: str
    password: str  # recovery phrase

    def __repr__(self) -> str:
        return f"MPCActivateCredentials(email={self.email!r})"


@dataclass(frozen=True)
class MPCWalletReconnectData:
    """Handed to the UI when a wallet has to be bootstrapped again."""

    wallet: Wallet
    email: str


# ============================================================================
# Bootstrap progress
# ============================================================================


class SetupStage(str, Enum):
    """Bootstrap stages, emitted in declaration order."""

    SUBMITTING_CODE = "submitting_code"
    INITIALISE_FIREBLOCKS = "initialise_fireblocks"
    REQUESTING_TO_JOIN_EXISTING_WALLET = "requesting_to_join_existing_wallet"
    AUTHORISING_NEW_DEVICE = "authorising_new_device"
    WAITING_FOR_KEYS_IS_READY = "waiting_for_keys_is_ready"
    INITIALISE_TRANSACTION = "initialise_transaction"
    WAITING_FOR_TRANSACTION_IS_READY = "waiting_for_transaction_is_ready"
    SIGNING_TRANSACTION = "signing_transaction"
    CONFIRMING_TRANSACTION = "confirming_transaction"
    VERIFYING_ACCESS_TOKEN = "verifying_access_token"
    GET_WALLET_ACCOUNT_DETAILS = "get_wallet_account_details"
    STORE_WALLET = "store_wallet"
    FINISHED = "finished"


@dataclass(frozen=True)
class SetupMPCWalletStep:
    """Progress event; `wallet` is set on `FINISHED`."""

    stage: SetupStage
    wallet: Wallet | None = None
