"""Crypto sender facade selecting a strategy by capability."""

from ..amounts import EVMTokenAmount, EstimatedGasPrices
from ..chains.evm import ChainSpec
from ..gas import GasPriceOracle
from ..jrpc import JrpcClient
from ..types import CryptoSenderError, ErrorCode
from ..wallet import Wallet
from .evm import EVMCryptoSender, NativeCoinSender, TokenSender
from .external import ExternalSignerBridge
from .tokens import CryptoSendingSpec, SupportedToken


class CryptoSender:
    """
    Sends native coins and ERC-20 tokens from a wallet.

    Holds an ordered list of strategies; the first one whose capability
    check accepts the (token, chain) pair handles the request.

    Example:
        >>> sender = CryptoSender(wallet, jrpc, gas_oracle)
        >>> spec = CryptoSendingSpec.from_units(SupportedToken.ETH, "0.01")
        >>> tx_hash = await sender.send_crypto(spec, ChainSpec(BlockchainType.ETHEREUM), "0x...")
    """

    STRATEGIES: tuple[type[EVMCryptoSender], ...] = (NativeCoinSender, TokenSender)

    def __init__(
        self,
        wallet: Wallet,
        jrpc: JrpcClient,
        gas_oracle: GasPriceOracle,
        external_signer: ExternalSignerBridge | None = None,
        strategies: list[EVMCryptoSender] | None = None,
    ) -> None:
        self.wallet = wallet
        if strategies is None:
            strategies = [
                strategy(wallet, jrpc, gas_oracle, external_signer) for strategy in self.STRATEGIES
            ]
        self._strategies = strategies

    def strategy_for(self, token: SupportedToken, chain: ChainSpec) -> EVMCryptoSender | None:
        """Get the first strategy able to send the token on the chain."""
        for strategy in self._strategies:
            if strategy.can_send_crypto(token, chain):
                return strategy
        return None

    def can_send_crypto(self, token: SupportedToken, chain: ChainSpec) -> bool:
        """Check if any strategy can send the token on the chain."""
        return self.strategy_for(token, chain) is not None

    async def send_crypto(self, crypto: CryptoSendingSpec, chain: ChainSpec, to_address: str) -> str:
        """Send crypto. Returns the tx hash."""
        return await self._require_strategy(crypto.token, chain).send_crypto(crypto, chain, to_address)

    async def compute_gas_fee_from(
        self, max_crypto: CryptoSendingSpec, chain: ChainSpec, to_address: str
    ) -> EVMTokenAmount:
        """Estimate the gas fee of sending `max_crypto` without broadcasting."""
        strategy = self._require_strategy(max_crypto.token, chain)
        return await strategy.compute_gas_fee_from(max_crypto, chain, to_address)

    async def fetch_gas_prices(self, chain: ChainSpec) -> EstimatedGasPrices:
        """Fetch tiered gas prices for a chain."""
        return await self._strategies[0].fetch_gas_prices(chain)

    def _require_strategy(self, token: SupportedToken, chain: ChainSpec) -> EVMCryptoSender:
        strategy = self.strategy_for(token, chain)
        if strategy is None:
            raise CryptoSenderError(
                ErrorCode.SENDING_NOT_SUPPORTED,
                f"Sending {token.value} on {chain.blockchain_type.value} is not supported",
            )
        return strategy
