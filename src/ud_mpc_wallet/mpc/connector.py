"""MPC connector over the custody SDK."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..config import PollingConfig
from ..logger import get_logger
from ..types import ConnectorError, ErrorCode
from .entities import ConnectedWalletDetails
from .storage import KeyShareStorage

logger = get_logger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class KeyAlgorithm(str, Enum):
    MPC_ECDSA_SECP256K1 = "MPC_ECDSA_SECP256K1"
    MPC_EDDSA_ED25519 = "MPC_EDDSA_ED25519"


class KeyStatus(str, Enum):
    INITIATED = "INITIATED"
    REQUESTED_SETUP = "REQUESTED_SETUP"
    SETUP = "SETUP"
    SETUP_COMPLETE = "SETUP_COMPLETE"
    READY = "READY"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"


class SignatureStatus(str, Enum):
    PENDING = "PENDING"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"


@dataclass
class KeyDescriptor:
    """Status of one locally held key."""

    algorithm: KeyAlgorithm
    key_status: KeyStatus
    key_id: str | None = None


class MPCSdk(Protocol):
    """The custody SDK surface the connector relies on."""

    async def request_join_existing_wallet(self, on_request_id: Callable[[str], None]) -> None:
        """Start the join ceremony. `on_request_id` may be called from any thread."""
        ...

    def stop_join_wallet(self) -> None:
        ...

    def get_keys_status(self) -> list[KeyDescriptor]:
        ...

    async def sign_transaction(self, tx_id: str) -> SignatureStatus:
        ...


class MPCConnector(Protocol):
    """Per-device key operations used by the connection service."""

    async def request_join_existing_wallet(self) -> str:
        ...

    async def wait_for_key_is_ready(self) -> None:
        ...

    async def sign_transaction_with(self, tx_id: str) -> None:
        ...

    def stop_join_wallet(self) -> None:
        ...


class RPCMessageRelay:
    """
    Forwards the SDK's outgoing protocol messages to the Wallets API.

    The token provider is called per message so steady-state connectors
    always send a fresh access token.
    """

    def __init__(self, send: Callable[[str, Any], Awaitable[Any]], token_provider: TokenProvider) -> None:
        self._send = send
        self._token_provider = token_provider

    @classmethod
    def with_fixed_token(cls, send: Callable[[str, Any], Awaitable[Any]], token: str) -> "RPCMessageRelay":
        async def provide() -> str:
            return token

        return cls(send, provide)

    async def handle_outgoing_message(self, message: Any) -> Any:
        token = await self._token_provider()
        return await self._send(token, message)


class FireblocksConnector:
    """
    Wraps one device's custody SDK instance.

    Example:
        >>> connector = FireblocksConnector(device_id, sdk)
        >>> request_id = await connector.request_join_existing_wallet()
        >>> await connector.wait_for_key_is_ready()
        >>> await connector.sign_transaction_with(tx_id)
    """

    def __init__(self, device_id: str, sdk: MPCSdk, polling: PollingConfig | None = None) -> None:
        self.device_id = device_id
        self._sdk = sdk
        self._polling = polling or PollingConfig()
        self._join_task: asyncio.Task | None = None

    async def request_join_existing_wallet(self) -> str:
        """Start joining the existing wallet. Returns the join request id."""
        loop = asyncio.get_running_loop()
        request_id_future: asyncio.Future[str] = loop.create_future()

        def set_request_id(request_id: str) -> None:
            if not request_id_future.done():
                request_id_future.set_result(request_id)

        def on_request_id(request_id: str) -> None:
            loop.call_soon_threadsafe(set_request_id, request_id)

        async def join() -> None:
            try:
                await self._sdk.request_join_existing_wallet(on_request_id)
            except Exception as e:
                logger.error(f"Failed to request to join existing wallet: {e}")
                if not request_id_future.done():
                    request_id_future.set_exception(
                        ConnectorError(ErrorCode.JOIN_WALLET_FAILED, f"Join wallet failed: {e}", e)
                    )

        self._join_task = asyncio.create_task(join())
        timeout = self._polling.join_wallet_timeout_secs
        try:
            request_id = await asyncio.wait_for(request_id_future, timeout=timeout)
        except asyncio.TimeoutError as e:
            self.stop_join_wallet()
            raise ConnectorError(
                ErrorCode.JOIN_WALLET_TIMEOUT, f"No join request id within {timeout}s", e
            ) from e

        logger.info(f"Got join wallet request id for device {self.device_id}")
        return request_id

    def stop_join_wallet(self) -> None:
        """Stop the join ceremony if one is running."""
        logger.debug(f"Will stop join wallet for device {self.device_id}")
        self._sdk.stop_join_wallet()
        if self._join_task is not None and not self._join_task.done():
            self._join_task.cancel()
        self._join_task = None

    def is_key_ready(self, algorithm: KeyAlgorithm = KeyAlgorithm.MPC_ECDSA_SECP256K1) -> bool:
        for key in self._sdk.get_keys_status():
            if key.algorithm == algorithm:
                return key.key_status == KeyStatus.READY
        return False

    async def wait_for_key_is_ready(self) -> None:
        """Poll until the ECDSA key is ready."""
        attempts = self._polling.key_ready_attempts
        for attempt in range(attempts):
            if self.is_key_ready():
                logger.info("Key is ready")
                return
            logger.debug(f"Key is not ready, attempt {attempt + 1}/{attempts}")
            await asyncio.sleep(self._polling.interval_secs)

        raise ConnectorError(ErrorCode.KEY_TIMEOUT, f"Key not ready after {attempts} attempts")

    async def sign_transaction_with(self, tx_id: str) -> None:
        """Co-sign `tx_id` until the SDK reports the signature completed."""
        self.stop_join_wallet()

        attempts = self._polling.sign_attempts
        for attempt in range(attempts):
            status = await self._sdk.sign_transaction(tx_id)
            if status == SignatureStatus.COMPLETED:
                logger.info(f"Signed transaction {tx_id}")
                return
            logger.debug(f"Transaction {tx_id} is {status}, attempt {attempt + 1}/{attempts}")
            await asyncio.sleep(self._polling.interval_secs)

        raise ConnectorError(ErrorCode.SIGN_TIMEOUT, f"Failed to sign transaction {tx_id}")


# ============================================================================
# Builders
# ============================================================================


SdkFactory = Callable[[str, RPCMessageRelay, Optional[KeyShareStorage]], MPCSdk]


class FireblocksConnectorBuilder(Protocol):
    def build_bootstrap_connector(self, device_id: str, access_token: str) -> MPCConnector:
        ...

    def build_wallet_connector(
        self, wallet: ConnectedWalletDetails, token_provider: TokenProvider
    ) -> MPCConnector:
        ...


class DefaultFireblocksConnectorBuilder:
    """
    Builds connectors on top of an SDK factory.

    `send_rpc_message(token, message)` delivers SDK messages to the server;
    normally `MPCConnectionNetworkService.send_rpc_message`.
    """

    def __init__(
        self,
        sdk_factory: SdkFactory,
        send_rpc_message: Callable[[str, Any], Awaitable[Any]],
        key_storage: KeyShareStorage | None = None,
        polling: PollingConfig | None = None,
    ) -> None:
        self._sdk_factory = sdk_factory
        self._send_rpc_message = send_rpc_message
        self._key_storage = key_storage
        self._polling = polling or PollingConfig()

    def build_bootstrap_connector(self, device_id: str, access_token: str) -> FireblocksConnector:
        relay = RPCMessageRelay.with_fixed_token(self._send_rpc_message, access_token)
        return self._build(device_id, relay)

    def build_wallet_connector(
        self, wallet: ConnectedWalletDetails, token_provider: TokenProvider
    ) -> FireblocksConnector:
        relay = RPCMessageRelay(self._send_rpc_message, token_provider)
        return self._build(wallet.device_id, relay)

    def _build(self, device_id: str, relay: RPCMessageRelay) -> FireblocksConnector:
        try:
            sdk = self._sdk_factory(device_id, relay, self._key_storage)
        except Exception as e:
            raise ConnectorError(ErrorCode.UNKNOWN, f"Failed to initialise SDK for {device_id}: {e}", e) from e
        return FireblocksConnector(device_id, sdk, self._polling)
