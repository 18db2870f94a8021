"""JSON-RPC client for EVM nodes."""

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
from eth_account import Account
from eth_utils import to_checksum_address

from .chains.evm import EvmChainConfig, get_chain_config
from .logger import get_logger
from .types import ErrorCode, JrpcCallError, JrpcError, WalletError
from .wallet import Wallet

logger = get_logger(__name__)

LOW_ALLOWANCE_MESSAGE = "gas required exceeds allowance"


@dataclass
class EvmTransaction:
    """Legacy (EIP-155) EVM transaction."""

    nonce: int
    gas_price: int  # wei
    gas: int
    from_address: str
    to: str
    value: int = 0  # wei
    data: str = "0x"

    def to_rpc_params(self) -> dict[str, str]:
        """Hex-quantity form used by eth_estimateGas and WalletConnect."""
        return {
            "from": self.from_address,
            "to": self.to,
            "nonce": hex(self.nonce),
            "gas": hex(self.gas),
            "gasPrice": hex(self.gas_price),
            "value": hex(self.value),
            "data": self.data or "0x",
        }

    def to_signable(self, chain_id: int) -> dict[str, Any]:
        """Dict accepted by eth_account for signing."""
        return {
            "nonce": self.nonce,
            "gasPrice": self.gas_price,
            "gas": self.gas,
            "to": to_checksum_address(self.to),
            "value": self.value,
            "data": self.data or "0x",
            "chainId": chain_id,
        }


def parse_quantity(value: Any) -> int:
    """Parse a hex quantity returned by a node."""
    if not isinstance(value, str):
        raise ValueError(f"Expected hex string, got {value!r}")
    return int(value.removeprefix("0x") or "0", 16)


class JrpcClient:
    """
    JSON-RPC client used to send native and token transfers.

    Example:
        >>> client = JrpcClient()
        >>> nonce = await client.fetch_nonce("0x...", chain_id=1)
        >>> tx_hash = await client.send_tx(transaction, wallet, chain_id=1)
    """

    def __init__(
        self,
        chains: dict[int, EvmChainConfig] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_delay_secs: float = 0.5,
        timeout_secs: float = 30.0,
    ) -> None:
        self._chains = chains
        self._transport = transport
        self._retry_delay_secs = retry_delay_secs
        self._timeout_secs = timeout_secs
        self._current_rpc_index: dict[int, int] = {}

    async def fetch_nonce(self, address: str, chain_id: int) -> int:
        """Get transaction count for an address, retrying once."""
        try:
            result = await self._rpc_call(chain_id, "eth_getTransactionCount", [address, "latest"])
        except WalletError as e:
            logger.warning(f"Failed to fetch nonce for {address} on {chain_id}: {e}. Will retry")
            await asyncio.sleep(self._retry_delay_secs)
            try:
                result = await self._rpc_call(chain_id, "eth_getTransactionCount", [address, "latest"])
            except WalletError as retry_error:
                raise JrpcError(
                    ErrorCode.NONCE_FETCH_FAILED,
                    f"Failed to fetch nonce for {address}",
                    retry_error,
                ) from retry_error

        try:
            return parse_quantity(result)
        except ValueError as e:
            raise JrpcError(ErrorCode.NONCE_FETCH_FAILED, f"Invalid nonce: {result!r}", e) from e

    async def fetch_gas_price(self, chain_id: int) -> int:
        """Get current gas price in wei."""
        try:
            result = await self._rpc_call(chain_id, "eth_gasPrice", [])
            gas_price = parse_quantity(result)
        except (WalletError, ValueError) as e:
            logger.warning(f"Failed to fetch gas price on {chain_id}: {e}")
            raise JrpcError(ErrorCode.GAS_FETCH_FAILED, "Failed to fetch gas price", e) from e

        logger.debug(f"Fetched gas price on {chain_id}: {gas_price}")
        return gas_price

    async def fetch_gas_limit(self, transaction: EvmTransaction, chain_id: int) -> int:
        """Estimate gas for a transaction."""
        params = transaction.to_rpc_params()
        # Let the node pick gas and price for the simulation
        params.pop("gas")
        params.pop("gasPrice")
        params.pop("nonce")

        try:
            result = await self._rpc_call(chain_id, "eth_estimateGas", [params])
        except JrpcCallError as e:
            if LOW_ALLOWANCE_MESSAGE in str(e).lower():
                logger.warning("Failed to estimate gas because of low allowance")
                raise JrpcError(ErrorCode.LOW_ALLOWANCE, str(e), e) from e
            logger.warning(f"Failed to estimate gas: {e}")
            raise JrpcError(ErrorCode.GAS_FETCH_FAILED, str(e), e) from e
        except WalletError as e:
            logger.warning(f"Failed to estimate gas: {e}")
            raise JrpcError(ErrorCode.GAS_FETCH_FAILED, "Failed to estimate gas", e) from e

        try:
            return parse_quantity(result)
        except ValueError as e:
            raise JrpcError(ErrorCode.GAS_FETCH_FAILED, f"Invalid gas estimate: {result!r}", e) from e

    async def send_tx(self, transaction: EvmTransaction, wallet: Wallet, chain_id: int) -> str:
        """Sign with the wallet's private key and broadcast. Returns the tx hash."""
        if not wallet.has_private_key:
            raise JrpcError(ErrorCode.NO_PRIVATE_KEY, f"No private key for wallet {wallet.address}")

        try:
            account = Account.from_key(wallet.private_key)
        except (ValueError, TypeError) as e:
            raise JrpcError(ErrorCode.NO_PRIVATE_KEY, "Wallet private key is invalid", e) from e

        total = transaction.gas * transaction.gas_price + transaction.value
        logger.debug(f"Sending tx from {account.address}, max total cost {total} wei")

        try:
            signed = account.sign_transaction(transaction.to_signable(chain_id))
        except Exception as e:
            raise JrpcError(ErrorCode.TX_SIGN_FAILED, f"Failed to sign transaction: {e}", e) from e

        raw_tx = "0x" + signed.raw_transaction.hex().removeprefix("0x")
        try:
            result = await self._rpc_call(chain_id, "eth_sendRawTransaction", [raw_tx])
        except WalletError as e:
            logger.error(f"Sending tx failed: {e}")
            raise JrpcError(ErrorCode.SEND_FAILED, f"Failed to send transaction: {e}", e) from e

        if not isinstance(result, str):
            raise JrpcError(ErrorCode.SEND_FAILED, f"Unexpected send response: {result!r}")
        return result

    async def _rpc_call(self, chain_id: int, method: str, params: list[Any]) -> Any:
        """Make an RPC call with failover between the chain's providers."""
        config = get_chain_config(chain_id, self._chains)
        rpc_urls = config.rpc_urls
        errors: list[str] = []

        async with httpx.AsyncClient(timeout=self._timeout_secs, transport=self._transport) as client:
            for _ in range(len(rpc_urls)):
                index = self._current_rpc_index.get(chain_id, 0) % len(rpc_urls)
                rpc_url = rpc_urls[index]

                try:
                    response = await client.post(
                        rpc_url,
                        json={
                            "jsonrpc": "2.0",
                            "method": method,
                            "params": params,
                            "id": 1,
                        },
                    )
                    response.raise_for_status()
                    data = response.json()
                except (httpx.HTTPError, ValueError) as e:
                    errors.append(f"{rpc_url}: {e}")
                    self._current_rpc_index[chain_id] = index + 1
                    continue

                if not isinstance(data, dict):
                    raise WalletError(ErrorCode.INVALID_RESPONSE, f"Unexpected RPC response from {rpc_url}: {data!r}")

                error = data.get("error")
                if error:
                    if isinstance(error, dict):
                        raise JrpcCallError(error.get("code"), str(error.get("message", "RPC error")))
                    raise JrpcCallError(None, str(error))

                return data.get("result")

        raise WalletError(ErrorCode.NETWORK_ERROR, f"All RPC endpoints failed: {', '.join(errors)}")
