"""EVM sending strategies."""

import asyncio
from abc import ABC, abstractmethod

from eth_utils import function_signature_to_4byte_selector, is_hex_address

from ..amounts import EVMTokenAmount, EstimatedGasPrices, TxSpeed
from ..chains.evm import BlockchainType, ChainSpec
from ..gas import GasPriceOracle
from ..jrpc import EvmTransaction, JrpcClient
from ..logger import get_logger
from ..types import CryptoSenderError, ErrorCode, WalletError
from ..wallet import Wallet
from .external import ExternalSignerBridge
from .tokens import CryptoSendingSpec, SupportedToken

logger = get_logger(__name__)

ERC20_TRANSFER_SELECTOR = function_signature_to_4byte_selector("transfer(address,uint256)")


def encode_erc20_transfer(to_address: str, amount: int) -> str:
    """ABI-encode `transfer(to, amount)` call data."""
    to_bytes = bytes.fromhex(to_address.removeprefix("0x").lower())
    payload = ERC20_TRANSFER_SELECTOR + to_bytes.rjust(32, b"\x00") + amount.to_bytes(32, "big")
    return "0x" + payload.hex()


class EVMCryptoSender(ABC):
    """
    Shared transaction assembly for EVM transfers.

    Subclasses decide which (token, chain) pairs they handle and how the
    transaction body looks; nonce, gas and dispatch are common.
    """

    default_gas_limit: int

    def __init__(
        self,
        wallet: Wallet,
        jrpc: JrpcClient,
        gas_oracle: GasPriceOracle,
        external_signer: ExternalSignerBridge | None = None,
        retry_delay_secs: float = 0.5,
    ) -> None:
        self.wallet = wallet
        self._jrpc = jrpc
        self._gas_oracle = gas_oracle
        self._external_signer = external_signer
        self._retry_delay_secs = retry_delay_secs

    @abstractmethod
    def can_send_crypto(self, token: SupportedToken, chain: ChainSpec) -> bool:
        """Check if this strategy handles the token on the chain."""

    @abstractmethod
    def _build_transaction(
        self,
        crypto: CryptoSendingSpec,
        from_address: str,
        to_address: str,
        chain: ChainSpec,
        nonce: int,
        gas_price: int,
    ) -> EvmTransaction:
        """Build the unsigned transaction with the default gas limit."""

    async def send_crypto(self, crypto: CryptoSendingSpec, chain: ChainSpec, to_address: str) -> str:
        """Build, sign and dispatch a transfer. Returns the tx hash."""
        self._ensure_supported(crypto.token, chain)

        tx = await self.create_send_transaction(crypto, self.wallet.address, to_address, chain)

        if self.wallet.is_external:
            if self._external_signer is None:
                raise CryptoSenderError(
                    ErrorCode.SENDING_NOT_SUPPORTED, "No external signer configured for linked wallet"
                )
            return await self._external_signer.request_transaction(self.wallet, tx, chain.id)

        return await self._jrpc.send_tx(tx, self.wallet, chain.id)

    async def compute_gas_fee_from(
        self, max_crypto: CryptoSendingSpec, chain: ChainSpec, to_address: str
    ) -> EVMTokenAmount:
        """Gas fee (price x limit) of the transaction that would send `max_crypto`."""
        self._ensure_supported(max_crypto.token, chain)

        tx = await self.create_send_transaction(max_crypto, self.wallet.address, to_address, chain)
        gas = tx.gas or self.default_gas_limit
        return EVMTokenAmount(wei=tx.gas_price * gas)

    async def create_send_transaction(
        self,
        crypto: CryptoSendingSpec,
        from_address: str,
        to_address: str,
        chain: ChainSpec,
    ) -> EvmTransaction:
        """Assemble the transaction: nonce, tiered gas price, best-effort gas limit."""
        if not is_hex_address(from_address) or not is_hex_address(to_address):
            raise CryptoSenderError(
                ErrorCode.INVALID_ADDRESSES, f"Invalid addresses: {from_address} -> {to_address}"
            )

        nonce = await self._jrpc.fetch_nonce(from_address, chain.id)
        gas_price = await self.fetch_gas_price(chain.id, crypto.speed)

        tx = self._build_transaction(crypto, from_address, to_address, chain, nonce, gas_price.wei)

        try:
            tx.gas = await self._jrpc.fetch_gas_limit(tx, chain.id)
        except WalletError as e:
            logger.info(f"Using default gas limit {tx.gas}: {e}")
        return tx

    async def fetch_gas_prices(self, chain: ChainSpec) -> EstimatedGasPrices:
        """Fetch all speed tiers for a chain."""
        return await self._fetch_gas_prices(chain.id)

    async def fetch_gas_price(self, chain_id: int, speed: TxSpeed) -> EVMTokenAmount:
        """Fetch the gas price for one speed tier."""
        prices = await self._fetch_gas_prices(chain_id)
        return prices.get_price_for_speed(speed)

    async def _fetch_gas_prices(self, chain_id: int) -> EstimatedGasPrices:
        try:
            return await self._gas_oracle.fetch_gas_prices(chain_id)
        except WalletError as e:
            logger.warning(f"Failed to fetch gas prices on {chain_id}: {e}. Will retry")

        await asyncio.sleep(self._retry_delay_secs)
        try:
            return await self._gas_oracle.fetch_gas_prices(chain_id)
        except WalletError as e:
            raise CryptoSenderError(
                ErrorCode.FAILED_TO_FETCH_GAS_PRICE, "Gas price source is unreachable", e
            ) from e

    def _ensure_supported(self, token: SupportedToken, chain: ChainSpec) -> None:
        if not self.can_send_crypto(token, chain):
            raise CryptoSenderError(
                ErrorCode.SENDING_NOT_SUPPORTED,
                f"Sending {token.value} on {chain.blockchain_type.value} is not supported",
            )


class NativeCoinSender(EVMCryptoSender):
    """Plain value transfer of a chain's native coin."""

    default_gas_limit = 21_000

    NATIVE_COINS = {
        BlockchainType.ETHEREUM: SupportedToken.ETH,
        BlockchainType.MATIC: SupportedToken.MATIC,
    }

    def can_send_crypto(self, token: SupportedToken, chain: ChainSpec) -> bool:
        return self.NATIVE_COINS.get(chain.blockchain_type) == token

    def _build_transaction(self, crypto, from_address, to_address, chain, nonce, gas_price):
        return EvmTransaction(
            nonce=nonce,
            gas_price=gas_price,
            gas=self.default_gas_limit,
            from_address=from_address,
            to=to_address,
            value=crypto.amount.get_on_chain_countable(),
        )


class TokenSender(EVMCryptoSender):
    """ERC-20 `transfer` call with zero native value."""

    default_gas_limit = 100_000

    def can_send_crypto(self, token: SupportedToken, chain: ChainSpec) -> bool:
        try:
            token.get_contract_address(chain)
        except CryptoSenderError:
            return False
        return True

    def _build_transaction(self, crypto, from_address, to_address, chain, nonce, gas_price):
        contract_address = crypto.token.get_contract_address(chain)
        if not is_hex_address(contract_address):
            raise CryptoSenderError(ErrorCode.INVALID_ADDRESSES, f"Invalid contract: {contract_address}")

        return EvmTransaction(
            nonce=nonce,
            gas_price=gas_price,
            gas=self.default_gas_limit,
            from_address=from_address,
            to=contract_address,
            value=0,
            data=encode_erc20_transfer(to_address, crypto.amount.get_on_chain_countable()),
        )
