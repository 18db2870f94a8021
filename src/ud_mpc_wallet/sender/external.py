"""Signing hand-off to externally linked (WalletConnect) wallets."""

import asyncio
import uuid
from typing import Any, Protocol

from ..jrpc import EvmTransaction
from ..logger import get_logger
from ..types import ErrorCode, ExternalSignerError
from ..wallet import Wallet

logger = get_logger(__name__)


class WalletConnectTransport(Protocol):
    """Delivers a signing request to the linked wallet app."""

    async def send_request(
        self, request_id: str, wallet: Wallet, method: str, params: list[Any], chain_id: int
    ) -> None:
        ...


class ExternalSignerBridge:
    """
    Correlates WalletConnect requests with their later responses.

    Each request gets its own pending slot keyed by request id, so several
    requests may be in flight at once. Responses are delivered through
    `resolve` / `reject` by whatever receives the WalletConnect session
    events.

    Example:
        >>> bridge = ExternalSignerBridge(transport, timeout_secs=120)
        >>> tx_hash = await bridge.request_transaction(wallet, tx, chain_id=1)
        >>> # elsewhere, on session response:
        >>> bridge.resolve(request_id, "0x...")
    """

    def __init__(self, transport: WalletConnectTransport, timeout_secs: float = 120.0) -> None:
        self._transport = transport
        self._timeout_secs = timeout_secs
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def pending_request_ids(self) -> list[str]:
        """Ids of requests awaiting a response."""
        return list(self._pending)

    async def request_transaction(self, wallet: Wallet, tx: EvmTransaction, chain_id: int) -> str:
        """Ask the external wallet to sign and send `tx`. Returns the tx hash."""
        return await self.request(wallet, "eth_sendTransaction", [tx.to_rpc_params()], chain_id)

    async def request(self, wallet: Wallet, method: str, params: list[Any], chain_id: int) -> str:
        """Send a request and wait for its correlated response."""
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._transport.send_request(request_id, wallet, method, params, chain_id)
            logger.debug(f"Sent {method} request {request_id} to {wallet.address}")
            return await asyncio.wait_for(future, timeout=self._timeout_secs)
        except asyncio.TimeoutError as e:
            raise ExternalSignerError(
                ErrorCode.EXTERNAL_SIGN_TIMEOUT,
                f"No response to {method} request {request_id} within {self._timeout_secs}s",
                e,
            ) from e
        finally:
            self._pending.pop(request_id, None)

    def resolve(self, request_id: str, result: str) -> bool:
        """Complete a pending request. Returns False for unknown ids."""
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.warning(f"Response for unknown request {request_id}")
            return False
        future.set_result(result)
        return True

    def reject(self, request_id: str, reason: str) -> bool:
        """Fail a pending request. Returns False for unknown ids."""
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.warning(f"Rejection for unknown request {request_id}")
            return False
        future.set_exception(
            ExternalSignerError(ErrorCode.EXTERNAL_SIGN_REJECTED, f"Request rejected: {reason}")
        )
        return True
