"""Wallets API client."""

import asyncio
from typing import Any

import httpx

from ..config import PollingConfig, WalletsApiConfig
from ..logger import get_logger
from ..types import ApiError, ErrorCode, MPCNetworkError
from .entities import (
    APIBadResponse,
    AuthTokens,
    BootstrapCodeSubmitResponse,
    Finished,
    MessageSigningType,
    NetworkFeeResponse,
    OperationDetails,
    OperationReadyResponse,
    OperationStatus,
    RefreshBootstrapTokenResponse,
    SetupTokenResponse,
    Signed,
    TxReady,
    WalletAccountAssetsResponse,
    WalletAccountsResponse,
    WalletTokenPortfolio,
)

logger = get_logger(__name__)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class MPCConnectionNetworkService:
    """
    Client for the `/wallet/v1` Wallets API.

    Every call except code submission and token exchanges is bearer-token
    authenticated. Non-2xx responses raise `ApiError` carrying the status
    code and raw body; transport failures raise `MPCNetworkError`.

    Example:
        >>> network = MPCConnectionNetworkService(WalletsApiConfig())
        >>> response = await network.submit_bootstrap_code("123456")
        >>> await network.verify_access_token(response.access_token)
    """

    def __init__(
        self,
        config: WalletsApiConfig | None = None,
        polling: PollingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or WalletsApiConfig()
        self._polling = polling or PollingConfig()
        self._transport = transport

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def send_bootstrap_code_to(self, email: str) -> None:
        await self._request("POST", "auth/bootstrap/email", json={"email": email})

    async def submit_bootstrap_code(self, code: str) -> BootstrapCodeSubmitResponse:
        """Exchange the emailed code for a temporary access token and device id."""
        try:
            data = await self._request("POST", "auth/bootstrap", json={"code": code})
        except ApiError as e:
            if e.status_code == 400:
                raise MPCNetworkError(ErrorCode.INCORRECT_CODE, "Incorrect bootstrap code", e) from e
            raise
        return BootstrapCodeSubmitResponse.model_validate(data)

    async def auth_new_device_with(self, request_id: str, recovery_phrase: str, access_token: str) -> None:
        """Authorise the joining device with the user's recovery phrase."""
        body = {"walletJoinRequestId": request_id, "recoveryPassphrase": recovery_phrase}
        try:
            await self._request("POST", "devices/bootstrap", token=access_token, json=body)
        except ApiError as e:
            if e.status_code == 400:
                raise MPCNetworkError(ErrorCode.INCORRECT_PASSWORD, "Incorrect recovery phrase", e) from e
            raise

    async def send_rpc_message(self, access_token: str, message: Any) -> Any:
        """Relay an SDK protocol message."""
        return await self._request("POST", "rpc/messages", token=access_token, json={"message": message})

    async def init_transaction_with_new_key_materials(self, access_token: str) -> SetupTokenResponse:
        data = await self._request("POST", "tokens/setup", token=access_token)
        return SetupTokenResponse.model_validate(data)

    async def wait_for_transaction_with_new_key_materials_ready(self, access_token: str) -> None:
        """Poll the setup transaction until it waits for the device's signature."""
        attempts = self._polling.key_materials_tx_attempts
        for attempt in range(attempts):
            data = await self._request("GET", "tokens/setup", token=access_token)
            response = SetupTokenResponse.model_validate(data)
            if response.is_ready:
                return
            logger.debug(f"Key materials tx is {response.status}, attempt {attempt + 1}/{attempts}")
            await asyncio.sleep(self._polling.interval_secs)

        raise MPCNetworkError(
            ErrorCode.KEY_MATERIALS_TX_TIMEOUT, f"Key materials transaction not ready after {attempts} attempts"
        )

    async def confirm_transaction_with_new_key_materials_signed(self, access_token: str) -> AuthTokens:
        """Confirm the signed setup transaction. Retries while the server is still processing it."""
        body = {"includeRefreshToken": True, "includeBootstrapToken": True}
        attempts = self._polling.confirm_processing_attempts
        for attempt in range(attempts):
            try:
                data = await self._request("POST", "tokens/confirm", token=access_token, json=body)
                return AuthTokens.model_validate(data)
            except ApiError as e:
                bad_response = APIBadResponse.from_body(e.body)
                if bad_response is None or not bad_response.is_processing or attempt == attempts - 1:
                    raise
                logger.info("Setup transaction is processing, will confirm again")
                await asyncio.sleep(self._polling.interval_secs)

        raise MPCNetworkError(ErrorCode.KEY_MATERIALS_TX_TIMEOUT, "Setup transaction never left processing")

    async def verify_access_token(self, access_token: str) -> None:
        await self._request("GET", "tokens/verify", token=access_token)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def refresh_token(self, refresh_token: str) -> AuthTokens:
        body = {"refreshToken": refresh_token, "includeRefreshToken": True, "includeBootstrapToken": True}
        data = await self._request("POST", "tokens/refresh", json=body)
        return AuthTokens.model_validate(data)

    async def refresh_bootstrap_token(self, bootstrap_token: str) -> RefreshBootstrapTokenResponse:
        data = await self._request("POST", "tokens/bootstrap", json={"bootstrapToken": bootstrap_token})
        return RefreshBootstrapTokenResponse.model_validate(data)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_accounts(self, access_token: str) -> WalletAccountsResponse:
        data = await self._request("GET", "accounts", token=access_token)
        return WalletAccountsResponse.model_validate(data)

    async def get_account_assets(
        self, account_id: str, access_token: str, include_balances: bool = False
    ) -> WalletAccountAssetsResponse:
        path = f"accounts/{account_id}/assets"
        if include_balances:
            path += "?$expand=balance"
        data = await self._request("GET", path, token=access_token)
        return WalletAccountAssetsResponse.model_validate(data)

    async def fetch_crypto_portfolio_for_mpc(self, wallet: str, access_token: str) -> list[WalletTokenPortfolio]:
        """Balances for one address from the portfolio endpoint."""
        url = self._config.portfolio_url.format(address=wallet)
        data = await self._request("GET", url, token=access_token)
        return [WalletTokenPortfolio.model_validate(item) for item in data or []]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start_message_signing(
        self,
        access_token: str,
        account_id: str,
        asset_id: str,
        message: str,
        signing_type: MessageSigningType,
    ) -> OperationDetails:
        if signing_type.typed_data:
            body = {"message": "0x" + message.encode().hex(), "type": "erc712", "encoding": "hex"}
        else:
            body = {"message": message, "encoding": signing_type.encoding.value}
        path = f"accounts/{account_id}/assets/{asset_id}/signatures"
        return await self._start_operation(path, access_token, body)

    async def start_asset_transfer(
        self, access_token: str, account_id: str, asset_id: str, destination_address: str, amount: str
    ) -> OperationDetails:
        body = {"destinationAddress": destination_address, "amount": amount}
        path = f"accounts/{account_id}/assets/{asset_id}/transfers"
        return await self._start_operation(path, access_token, body)

    async def start_send_eth_transaction(
        self,
        access_token: str,
        account_id: str,
        asset_id: str,
        destination_address: str,
        data: str,
        value: str,
    ) -> OperationDetails:
        body = {"destinationAddress": destination_address, "data": data, "value": value}
        path = f"accounts/{account_id}/assets/{asset_id}/transactions"
        return await self._start_operation(path, access_token, body)

    async def get_asset_transfer_estimations(
        self, access_token: str, account_id: str, asset_id: str, destination_address: str, amount: str
    ) -> NetworkFeeResponse:
        body = {"destinationAddress": destination_address, "amount": amount}
        path = f"accounts/{account_id}/assets/{asset_id}/transfers/estimates"
        data = await self._request("POST", path, token=access_token, json=body)
        return NetworkFeeResponse.model_validate(data)

    async def wait_for_operation_ready_and_get_tx_id(
        self, access_token: str, operation_id: str
    ) -> OperationReadyResponse:
        """Wait until the operation needs a co-signature or is already done."""
        operation = await self._wait_for_operation_statuses(
            access_token, operation_id, {OperationStatus.SIGNATURE_REQUIRED, OperationStatus.COMPLETED}
        )
        if operation.status == OperationStatus.SIGNATURE_REQUIRED.value:
            tx_id = operation.transaction.external_vendor_transaction_id if operation.transaction else None
            if not tx_id:
                raise MPCNetworkError(
                    ErrorCode.MISSING_VENDOR_TX_ID, f"Operation {operation_id} has no vendor transaction id"
                )
            return TxReady(tx_id=tx_id)

        if operation.result and operation.result.signature:
            return Signed(signature=operation.result.signature)
        if operation.transaction and operation.transaction.id:
            return Finished(tx_hash=operation.transaction.id)
        raise MPCNetworkError(
            ErrorCode.COMPLETED_OPERATION_MISSING_RESULT, f"Completed operation {operation_id} has no result"
        )

    async def wait_for_operation_signed_and_get_tx_signature(self, access_token: str, operation_id: str) -> str:
        operation = await self._wait_for_operation_statuses(
            access_token, operation_id, {OperationStatus.COMPLETED}
        )
        if not operation.result or not operation.result.signature:
            raise MPCNetworkError(ErrorCode.MISSING_SIGNATURE, f"Operation {operation_id} has no signature")
        return operation.result.signature

    async def wait_for_tx_completed_and_get_hash(self, access_token: str, operation_id: str) -> str:
        operation = await self._wait_for_operation_statuses(
            access_token, operation_id, {OperationStatus.PROCESSING, OperationStatus.COMPLETED}
        )
        if not operation.transaction or not operation.transaction.id:
            raise MPCNetworkError(ErrorCode.MISSING_TX_HASH, f"Operation {operation_id} has no transaction hash")
        return operation.transaction.id

    async def get_operation(self, access_token: str, operation_id: str) -> OperationDetails:
        data = await self._request("GET", f"operations/{operation_id}", token=access_token)
        return OperationDetails.model_validate(data)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def request_recovery(self, access_token: str, password: str) -> None:
        await self._request("POST", "recovery", token=access_token, json={"recoveryPassphrase": password})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _start_operation(self, path: str, access_token: str, body: dict[str, Any]) -> OperationDetails:
        data = await self._request("POST", path, token=access_token, json=body)
        try:
            return OperationDetails.model_validate(data["operation"])
        except (KeyError, TypeError) as e:
            raise MPCNetworkError(ErrorCode.INVALID_RESPONSE, f"No operation in response: {data!r}", e) from e

    async def _wait_for_operation_statuses(
        self, access_token: str, operation_id: str, statuses: set[OperationStatus]
    ) -> OperationDetails:
        wanted = {status.value for status in statuses}
        attempts = self._polling.operation_attempts
        for _ in range(attempts):
            operation = await self.get_operation(access_token, operation_id)
            if operation.status in wanted:
                return operation
            if operation.status == OperationStatus.FAILED.value:
                raise MPCNetworkError(ErrorCode.OPERATION_FAILED, f"Operation {operation_id} failed")
            await asyncio.sleep(self._polling.interval_secs)

        raise MPCNetworkError(
            ErrorCode.OPERATION_TIMEOUT, f"Operation {operation_id} not in {sorted(wanted)} after {attempts} attempts"
        )

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._config.v1_url}/{path}"

    async def _request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        json: Any = None,
    ) -> Any:
        """Make a request and return the decoded JSON body (None when empty)."""
        url = self._url(path)
        headers = bearer(token) if token else {}

        async with httpx.AsyncClient(timeout=self._config.timeout_secs, transport=self._transport) as client:
            try:
                response = await client.request(method, url, headers=headers, json=json)
            except httpx.HTTPError as e:
                logger.warning(f"{method} {path} failed: {e}")
                raise MPCNetworkError(ErrorCode.NETWORK_ERROR, f"Request to {path} failed: {e}", e) from e

        if not response.is_success:
            logger.warning(f"{method} {path} returned {response.status_code}")
            raise ApiError(response.status_code, f"{method} {path} returned {response.status_code}", response.content)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise MPCNetworkError(ErrorCode.INVALID_RESPONSE, f"Invalid JSON from {path}", e) from e
