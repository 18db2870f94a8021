"""Gas price sources returning all three speed tiers from one fetch."""

from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from .amounts import EVMTokenAmount, EstimatedGasPrices
from .jrpc import JrpcClient
from .logger import get_logger
from .types import ErrorCode, WalletError

logger = get_logger(__name__)


class GasPriceOracle(Protocol):
    """Source of tiered gas price estimates."""

    async def fetch_gas_prices(self, chain_id: int) -> EstimatedGasPrices:
        ...


class InfuraGasPriceOracle:
    """Infura gas API (`suggestedGasFees`); low/medium/high map to normal/fast/urgent."""

    BASE_URL = "https://gas.api.infura.io/v3"

    def __init__(
        self,
        api_key: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_secs: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._transport = transport
        self._timeout_secs = timeout_secs

    async def fetch_gas_prices(self, chain_id: int) -> EstimatedGasPrices:
        url = f"{self.BASE_URL}/{self._api_key}/networks/{chain_id}/suggestedGasFees"
        async with httpx.AsyncClient(timeout=self._timeout_secs, transport=self._transport) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise WalletError(ErrorCode.NETWORK_ERROR, f"Failed to fetch gas prices: {e}", e) from e

        try:
            return EstimatedGasPrices(
                normal=EVMTokenAmount(gwei=Decimal(data["low"]["suggestedMaxFeePerGas"])),
                fast=EVMTokenAmount(gwei=Decimal(data["medium"]["suggestedMaxFeePerGas"])),
                urgent=EVMTokenAmount(gwei=Decimal(data["high"]["suggestedMaxFeePerGas"])),
            )
        except (KeyError, TypeError, InvalidOperation, ValueError) as e:
            raise WalletError(ErrorCode.INVALID_RESPONSE, f"Unexpected gas price response: {data!r}", e) from e


class JrpcGasPriceOracle:
    """Tiers derived from the node's `eth_gasPrice` by fixed multipliers."""

    MULTIPLIERS = {
        "normal": Decimal("1"),
        "fast": Decimal("1.25"),
        "urgent": Decimal("1.5"),
    }

    def __init__(self, jrpc: JrpcClient) -> None:
        self._jrpc = jrpc

    async def fetch_gas_prices(self, chain_id: int) -> EstimatedGasPrices:
        base = Decimal(await self._jrpc.fetch_gas_price(chain_id))
        logger.debug(f"Base gas price on {chain_id}: {base}")
        return EstimatedGasPrices(
            normal=EVMTokenAmount(wei=int(base * self.MULTIPLIERS["normal"])),
            fast=EVMTokenAmount(wei=int(base * self.MULTIPLIERS["fast"])),
            urgent=EVMTokenAmount(wei=int(base * self.MULTIPLIERS["urgent"])),
        )
