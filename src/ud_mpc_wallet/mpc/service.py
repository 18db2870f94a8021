"""MPC connection service: device bootstrap and steady-state wallet operations."""

import asyncio
import functools
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, Awaitable, Callable, Protocol, TypeVar

from eth_utils import is_0x_prefixed, is_hex

from ..amounts import trim_decimal
from ..chains.evm import BlockchainType
from ..config import ServiceConfig
from ..logger import get_logger
from ..types import ApiError, BootstrapError, ErrorCode, MPCConnectionServiceError, StorageError, WalletError
from ..wallet import MPCWalletMetadata, MPCWalletProvider, Wallet, WalletsRegistry
from .connector import FireblocksConnectorBuilder, MPCConnector
from .entities import (
    APIBadResponse,
    ConnectedWalletDetails,
    Finished,
    JWToken,
    MessageSigningType,
    MPCActivateCredentials,
    MPCWalletReconnectData,
    OperationDetails,
    SetupMPCWalletStep,
    SetupStage,
    SignMessageEncoding,
    Signed,
    TxReady,
    UDWalletMetadata,
    WalletAccountAsset,
    WalletAccountWithAssets,
    WalletTokenPortfolio,
)
from .network import MPCConnectionNetworkService
from .queuer import ActionsQueuer
from .storage import MPCWalletsDataStorage

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_ASSET_DECIMALS = 9


class MPCWalletsUIHandler(Protocol):
    """UI hooks the service needs."""

    async def ask_to_reconnect_mpc_wallet(self, data: MPCWalletReconnectData) -> None:
        ...


def chain_code(chain: BlockchainType | str) -> str:
    return chain.value if isinstance(chain, BlockchainType) else chain


class MPCConnectionService:
    """
    Attaches this device to an existing custodial MPC wallet and runs
    signing, transfers and balance queries on its behalf.

    Operations on one device never overlap: each one takes the device in
    the `ActionsQueuer` and waits while another operation holds it.

    Example:
        >>> service = MPCConnectionService(builder, network, storage, wallets, ui_handler)
        >>> async for step in service.setup_mpc_wallet_with("123456", credentials):
        ...     print(step.stage)
        >>> signature = await service.sign_personal_message("Hello", BlockchainType.ETHEREUM, metadata)
    """

    provider = MPCWalletProvider.FIREBLOCKS_UD

    def __init__(
        self,
        connector_builder: FireblocksConnectorBuilder,
        network: MPCConnectionNetworkService,
        storage: MPCWalletsDataStorage,
        wallets: WalletsRegistry,
        ui_handler: MPCWalletsUIHandler,
        config: ServiceConfig | None = None,
    ) -> None:
        config = config or ServiceConfig.default()
        self._connector_builder = connector_builder
        self._network = network
        self._storage = storage
        self._wallets = wallets
        self._ui_handler = ui_handler
        self._queuer = ActionsQueuer(config.action_poll_interval_secs)
        self._background_tasks: set[asyncio.Task] = set()
        wallets.add_listener(self)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def send_bootstrap_code_to(self, email: str) -> None:
        await self._network.send_bootstrap_code_to(email)

    async def setup_mpc_wallet_with(
        self, code: str, credentials: MPCActivateCredentials
    ) -> AsyncIterator[SetupMPCWalletStep]:
        """
        Run the bootstrap ceremony, yielding each stage as it starts.

        Ends with a `FINISHED` step carrying the registered wallet. On failure
        the join flow is stopped, anything stored for the device is cleared,
        and `BootstrapError` is raised naming the failed stage.
        """
        connector: MPCConnector | None = None
        device_id: str | None = None
        stage = SetupStage.SUBMITTING_CODE

        try:
            yield SetupMPCWalletStep(stage)
            submit_response = await self._network.submit_bootstrap_code(code)
            access_token = submit_response.access_token
            device_id = submit_response.device_id

            stage = SetupStage.INITIALISE_FIREBLOCKS
            yield SetupMPCWalletStep(stage)
            connector = self._connector_builder.build_bootstrap_connector(device_id, access_token)
            connector.stop_join_wallet()

            stage = SetupStage.REQUESTING_TO_JOIN_EXISTING_WALLET
            yield SetupMPCWalletStep(stage)
            request_id = await connector.request_join_existing_wallet()

            stage = SetupStage.AUTHORISING_NEW_DEVICE
            yield SetupMPCWalletStep(stage)
            await self._network.auth_new_device_with(request_id, credentials.password, access_token)

            stage = SetupStage.WAITING_FOR_KEYS_IS_READY
            yield SetupMPCWalletStep(stage)
            await connector.wait_for_key_is_ready()

            stage = SetupStage.INITIALISE_TRANSACTION
            yield SetupMPCWalletStep(stage)
            setup_tx = await self._network.init_transaction_with_new_key_materials(access_token)

            stage = SetupStage.WAITING_FOR_TRANSACTION_IS_READY
            yield SetupMPCWalletStep(stage)
            await self._network.wait_for_transaction_with_new_key_materials_ready(access_token)

            stage = SetupStage.SIGNING_TRANSACTION
            yield SetupMPCWalletStep(stage)
            await connector.sign_transaction_with(setup_tx.transaction_id)

            stage = SetupStage.CONFIRMING_TRANSACTION
            yield SetupMPCWalletStep(stage)
            tokens = await self._network.confirm_transaction_with_new_key_materials_signed(access_token)

            stage = SetupStage.VERIFYING_ACCESS_TOKEN
            yield SetupMPCWalletStep(stage)
            await self._network.verify_access_token(tokens.access_token.jwt)

            stage = SetupStage.GET_WALLET_ACCOUNT_DETAILS
            yield SetupMPCWalletStep(stage)
            first_account, accounts = await self._get_wallet_account_details(tokens.access_token.jwt)
            details = ConnectedWalletDetails(
                email=credentials.email,
                device_id=device_id,
                tokens=tokens,
                first_account=first_account,
                accounts=accounts,
            )

            stage = SetupStage.STORE_WALLET
            yield SetupMPCWalletStep(stage)
            wallet = self._prepare_and_save_mpc_wallet(details)
        except Exception as e:
            logger.error(f"Failed to set up MPC wallet at {stage.value}: {e}")
            if device_id is not None:
                self._clear_wallet_details(device_id)
            raise BootstrapError(stage.value, e) from e
        finally:
            if connector is not None:
                connector.stop_join_wallet()

        logger.info(f"MPC wallet {wallet.address} is set up")
        yield SetupMPCWalletStep(SetupStage.FINISHED, wallet)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def sign_personal_message(
        self, message: str, chain: BlockchainType | str, wallet_metadata: MPCWalletMetadata
    ) -> str:
        """Personal-sign a message; 0x-prefixed hex is sent as hex, anything else as utf8."""
        if len(message) > 2 and is_0x_prefixed(message) and is_hex(message):
            encoding = SignMessageEncoding.HEX
        else:
            encoding = SignMessageEncoding.UTF8
        return await self._sign_message(
            message, MessageSigningType.personal_sign(encoding), chain, wallet_metadata
        )

    async def sign_typed_data_message(
        self, message: str, chain: BlockchainType | str, wallet_metadata: MPCWalletMetadata
    ) -> str:
        """Sign an EIP-712 typed data JSON string."""
        return await self._sign_message(message, MessageSigningType.typed(), chain, wallet_metadata)

    async def _sign_message(
        self,
        message: str,
        signing_type: MessageSigningType,
        chain: BlockchainType | str,
        wallet_metadata: MPCWalletMetadata,
    ) -> str:
        details = self._get_connected_wallet_details_for(wallet_metadata)
        connector = self._build_wallet_connector(details)

        async with self._queuer.device_action(details.device_id):
            account = details.first_account
            asset = account.get_asset_to_sign_with(chain_code(chain))

            async def sign(token: str) -> str:
                operation = await self._network.start_message_signing(
                    token, account.id, asset.id, message, signing_type
                )
                ready = await self._network.wait_for_operation_ready_and_get_tx_id(token, operation.id)
                if isinstance(ready, Signed):
                    return ready.signature
                if isinstance(ready, TxReady):
                    await connector.sign_transaction_with(ready.tx_id)
                    return await self._network.wait_for_operation_signed_and_get_tx_signature(
                        token, operation.id
                    )
                raise MPCConnectionServiceError(
                    ErrorCode.INCORRECT_OPERATION_STATE, f"Signing operation {operation.id} finished without a signature"
                )

            return await self._perform_auth_error_catching_block(details, sign)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def can_transfer_assets(self, symbol: str, chain: BlockchainType | str, wallet_metadata: MPCWalletMetadata) -> bool:
        try:
            details = self._get_connected_wallet_details_for(wallet_metadata)
        except WalletError:
            return False
        return details.first_account.can_send_crypto_to(symbol, chain_code(chain))

    async def transfer_assets(
        self,
        amount: Decimal | float | str,
        symbol: str,
        chain: BlockchainType | str,
        destination_address: str,
        wallet_metadata: MPCWalletMetadata,
    ) -> str:
        """Transfer an asset. Returns the transaction hash."""
        details = self._get_connected_wallet_details_for(wallet_metadata)
        connector = self._build_wallet_connector(details)

        async with self._queuer.device_action(details.device_id):
            account = details.first_account
            asset = account.get_asset_with(symbol, chain_code(chain))
            trimmed_amount = self._trim_amount(amount, asset)

            async def transfer(token: str) -> str:
                operation = await self._network.start_asset_transfer(
                    token, account.id, asset.id, destination_address, trimmed_amount
                )
                return await self._sign_operation_and_get_hash(operation, token, connector)

            return await self._perform_auth_error_catching_block(details, transfer)

    async def send_eth_transaction(
        self,
        data: str,
        value: str,
        chain: BlockchainType | str,
        destination_address: str,
        wallet_metadata: MPCWalletMetadata,
    ) -> str:
        """Send an arbitrary contract call / value transaction. Returns the transaction hash."""
        details = self._get_connected_wallet_details_for(wallet_metadata)
        connector = self._build_wallet_connector(details)

        async with self._queuer.device_action(details.device_id):
            account = details.first_account
            asset = account.get_asset_to_sign_with(chain_code(chain))

            async def send(token: str) -> str:
                operation = await self._network.start_send_eth_transaction(
                    token, account.id, asset.id, destination_address, data, value
                )
                return await self._sign_operation_and_get_hash(operation, token, connector)

            return await self._perform_auth_error_catching_block(details, send)

    async def _sign_operation_and_get_hash(
        self, operation: OperationDetails, token: str, connector: MPCConnector
    ) -> str:
        ready = await self._network.wait_for_operation_ready_and_get_tx_id(token, operation.id)
        if isinstance(ready, TxReady):
            await connector.sign_transaction_with(ready.tx_id)
            return await self._network.wait_for_tx_completed_and_get_hash(token, operation.id)
        if isinstance(ready, Finished):
            return ready.tx_hash
        raise MPCConnectionServiceError(
            ErrorCode.INCORRECT_OPERATION_STATE, f"Transfer operation {operation.id} returned a signature"
        )

    async def fetch_gas_fee_for(
        self,
        amount: Decimal | float | str,
        symbol: str,
        chain: BlockchainType | str,
        destination_address: str,
        wallet_metadata: MPCWalletMetadata,
    ) -> Decimal:
        """Network fee the server estimates for a transfer, in the chain's native units."""
        details = self._get_connected_wallet_details_for(wallet_metadata)
        account = details.first_account
        asset = account.get_asset_with(symbol, chain_code(chain))
        trimmed_amount = self._trim_amount(amount, asset)

        async def estimate(token: str) -> Decimal:
            estimations = await self._network.get_asset_transfer_estimations(
                token, account.id, asset.id, destination_address, trimmed_amount
            )
            if estimations.network_fee is None:
                raise MPCConnectionServiceError(ErrorCode.MISSING_NETWORK_FEE, "Estimate has no network fee")
            try:
                return Decimal(estimations.network_fee.amount)
            except InvalidOperation as e:
                raise MPCConnectionServiceError(
                    ErrorCode.INVALID_NETWORK_FEE_AMOUNT_FORMAT,
                    f"Invalid network fee amount {estimations.network_fee.amount!r}",
                    e,
                ) from e

        return await self._perform_auth_error_catching_block(details, estimate)

    def _trim_amount(self, amount: Decimal | float | str, asset: WalletAccountAsset) -> str:
        decimals = DEFAULT_ASSET_DECIMALS
        if asset.balance is not None and asset.balance.decimals is not None:
            decimals = asset.balance.decimals
        try:
            return trim_decimal(amount, decimals)
        except (ArithmeticError, ValueError) as e:
            raise MPCConnectionServiceError(
                ErrorCode.FAILED_TO_TRIM_AMOUNT, f"Can't trim amount {amount!r} to {decimals} decimals", e
            ) from e

    # ------------------------------------------------------------------
    # Balances & recovery
    # ------------------------------------------------------------------

    async def get_balances_for(self, wallet_metadata: MPCWalletMetadata) -> list[WalletTokenPortfolio]:
        """Portfolio for every distinct asset address; failed addresses contribute nothing."""
        details = await self._refresh_wallet_account_details(wallet_metadata)
        addresses = sorted({asset.address for asset in details.first_account.assets})

        async def fetch(token: str) -> list[WalletTokenPortfolio]:
            results = await asyncio.gather(
                *(self._network.fetch_crypto_portfolio_for_mpc(address, token) for address in addresses),
                return_exceptions=True,
            )
            balances: list[WalletTokenPortfolio] = []
            for address, result in zip(addresses, results):
                if isinstance(result, Exception):
                    logger.warning(f"Failed to fetch balance for {address}: {result}")
                    continue
                if isinstance(result, BaseException):
                    raise result
                balances.extend(result)
            return balances

        return await self._perform_auth_error_catching_block(details, fetch)

    async def request_recovery(self, wallet_metadata: MPCWalletMetadata, password: str) -> str:
        """Ask the server to email a recovery kit. Returns the email it goes to."""
        details = self._get_connected_wallet_details_for(wallet_metadata)

        async def request(token: str) -> str:
            await self._network.request_recovery(token, password)
            return details.email

        return await self._perform_auth_error_catching_block(details, request)

    # ------------------------------------------------------------------
    # Wallets listener
    # ------------------------------------------------------------------

    def wallet_removed(self, wallet: Wallet) -> None:
        """Forget the stored tokens and accounts of a removed MPC wallet."""
        if wallet.mpc_metadata is None:
            return
        try:
            metadata = self._decode_metadata(wallet.mpc_metadata)
        except WalletError as e:
            logger.warning(f"Removed wallet {wallet.address} has unreadable MPC metadata: {e}")
            return
        self._clear_wallet_details(metadata.device_id)

    # ------------------------------------------------------------------
    # Auth tokens
    # ------------------------------------------------------------------

    async def get_auth_tokens(self, wallet: ConnectedWalletDetails, force_refresh: bool = False) -> str:
        """
        Fresh access token for the wallet's device.

        Concurrent callers for one device share a single refresh. A forced
        refresh starts its own task rather than joining an unforced one.
        """
        device_id = wallet.device_id
        task = self._queuer.get_token_task(device_id, force_refresh)
        if task is None:
            task = asyncio.create_task(self._get_fresh_access_token(device_id, force_refresh))
            self._queuer.set_token_task(device_id, task, force_refresh)
            task.add_done_callback(functools.partial(self._queuer.remove_token_task, device_id))
        return await asyncio.shield(task)

    async def _get_fresh_access_token(self, device_id: str, force_refresh: bool) -> str:
        tokens = self._storage.retrieve_auth_tokens(device_id)
        if tokens is None:
            raise MPCConnectionServiceError(ErrorCode.FAILED_TO_FIND_WALLET, f"No tokens stored for device {device_id}")

        if not tokens.access_token.is_expired() and not force_refresh:
            return tokens.access_token.jwt

        if not tokens.refresh_token.is_expired():
            return await self._refresh_and_store_token(tokens.refresh_token, device_id)

        if not tokens.bootstrap_token.is_expired():
            return await self._refresh_and_store_bootstrap_token(tokens.bootstrap_token, device_id)

        self._did_expire_token_with(device_id)
        raise MPCConnectionServiceError(ErrorCode.TOKENS_EXPIRED, f"All tokens of device {device_id} expired")

    async def _refresh_and_store_token(self, refresh_token: JWToken, device_id: str) -> str:
        try:
            tokens = await self._network.refresh_token(refresh_token.jwt)
        except ApiError as e:
            bad_response = APIBadResponse.from_body(e.body)
            if bad_response is not None and bad_response.is_invalid_code_response:
                self._did_expire_token_with(device_id)
            raise

        self._storage.store_auth_tokens(device_id, tokens)
        logger.debug(f"Refreshed access token for device {device_id}")
        return tokens.access_token.jwt

    async def _refresh_and_store_bootstrap_token(self, bootstrap_token: JWToken, current_device_id: str) -> str:
        """Mint tokens from the bootstrap token by repeating the key-material proof."""
        connector: MPCConnector | None = None
        try:
            response = await self._network.refresh_bootstrap_token(bootstrap_token.jwt)
            access_token = response.access_token
            connector = self._connector_builder.build_bootstrap_connector(response.device_id, access_token)
            connector.stop_join_wallet()

            await connector.wait_for_key_is_ready()
            setup_tx = await self._network.init_transaction_with_new_key_materials(access_token)
            await self._network.wait_for_transaction_with_new_key_materials_ready(access_token)
            await connector.sign_transaction_with(setup_tx.transaction_id)
            tokens = await self._network.confirm_transaction_with_new_key_materials_signed(access_token)
        except Exception:
            self._did_expire_token_with(current_device_id)
            raise

        self._storage.store_auth_tokens(current_device_id, tokens)
        logger.info(f"Re-issued tokens from bootstrap token for device {current_device_id}")
        return tokens.access_token.jwt

    async def _perform_auth_error_catching_block(
        self, details: ConnectedWalletDetails, block: Callable[[str], Awaitable[T]]
    ) -> T:
        """Run `block` with a fresh token; on HTTP 403 retry once with a forced refresh."""
        try:
            token = await self.get_auth_tokens(details)
            return await block(token)
        except ApiError as e:
            if e.status_code != 403:
                raise
            logger.info(f"Access token rejected for device {details.device_id}, refreshing")
            token = await self.get_auth_tokens(details, force_refresh=True)
            return await block(token)

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _did_expire_token_with(self, device_id: str) -> None:
        self._queuer.add_restore_device_id(device_id)
        self._restore_wallet_if_needed()

    def _restore_wallet_if_needed(self) -> None:
        task = asyncio.create_task(self._restore_next_wallet())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _restore_next_wallet(self) -> None:
        device_id = self._queuer.get_device_id_to_restore_and_start()
        if device_id is None:
            return

        try:
            wallet, metadata = self._find_wallet_with(device_id)
            await self._ui_handler.ask_to_reconnect_mpc_wallet(
                MPCWalletReconnectData(wallet=wallet, email=metadata.email)
            )
        except WalletError as e:
            logger.warning(f"Can't reconnect device {device_id}: {e}")
        except Exception as e:
            logger.error(f"Reconnect prompt for device {device_id} failed: {e}")
        finally:
            self._queuer.stop_and_remove_restore_device_id(device_id)

        self._restore_wallet_if_needed()

    async def wait_for_background_tasks(self) -> None:
        """Wait until queued reconnection prompts are handled."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def _find_wallet_with(self, device_id: str) -> tuple[Wallet, UDWalletMetadata]:
        for wallet in self._wallets.get_user_wallets():
            if wallet.mpc_metadata is None:
                continue
            try:
                metadata = self._decode_metadata(wallet.mpc_metadata)
            except WalletError:
                continue
            if metadata.device_id == device_id:
                return wallet, metadata

        raise MPCConnectionServiceError(ErrorCode.FAILED_TO_FIND_WALLET, f"No wallet for device {device_id}")

    # ------------------------------------------------------------------
    # Stored wallet details
    # ------------------------------------------------------------------

    def _decode_metadata(self, wallet_metadata: MPCWalletMetadata) -> UDWalletMetadata:
        try:
            return UDWalletMetadata.model_validate(wallet_metadata.decode())
        except ValueError as e:
            raise MPCConnectionServiceError(
                ErrorCode.INVALID_WALLET_METADATA, f"Invalid MPC wallet metadata: {e}", e
            ) from e

    def _get_connected_wallet_details_for(self, wallet_metadata: MPCWalletMetadata) -> ConnectedWalletDetails:
        device_id = self._decode_metadata(wallet_metadata).device_id
        tokens = self._storage.retrieve_auth_tokens(device_id)
        accounts_details = self._storage.retrieve_accounts_details(device_id)
        if tokens is None or accounts_details is None:
            raise MPCConnectionServiceError(
                ErrorCode.FAILED_TO_FIND_WALLET, f"No stored wallet details for device {device_id}"
            )
        return ConnectedWalletDetails.from_stored(accounts_details, tokens)

    async def _refresh_wallet_account_details(self, wallet_metadata: MPCWalletMetadata) -> ConnectedWalletDetails:
        details = self._get_connected_wallet_details_for(wallet_metadata)

        async def refresh(token: str) -> ConnectedWalletDetails:
            first_account, accounts = await self._get_wallet_account_details(token)
            refreshed = ConnectedWalletDetails(
                email=details.email,
                device_id=details.device_id,
                tokens=self._storage.retrieve_auth_tokens(details.device_id) or details.tokens,
                first_account=first_account,
                accounts=accounts,
            )
            self._storage.store_accounts_details(details.device_id, refreshed.create_wallet_accounts_details())
            return refreshed

        return await self._perform_auth_error_catching_block(details, refresh)

    async def _get_wallet_account_details(
        self, access_token: str
    ) -> tuple[WalletAccountWithAssets, list[WalletAccountWithAssets]]:
        accounts_response = await self._network.get_accounts(access_token)
        accounts = []
        for account in accounts_response.items:
            assets_response = await self._network.get_account_assets(account.id, access_token, include_balances=True)
            accounts.append(WalletAccountWithAssets.create(account, assets_response.items))

        if not accounts:
            raise MPCConnectionServiceError(ErrorCode.NO_ACCOUNTS_FOR_WALLET, "Wallet has no accounts")
        return accounts[0], accounts

    def _prepare_and_save_mpc_wallet(self, details: ConnectedWalletDetails) -> Wallet:
        """Persist tokens and accounts in one write, then register the wallet."""
        eth_address = details.get_eth_wallet_address()
        if eth_address is None:
            raise MPCConnectionServiceError(ErrorCode.FAILED_TO_GET_ETH_ADDRESS, "Wallet has no Ethereum address")

        self._storage.store_wallet(details.device_id, details.tokens, details.create_wallet_accounts_details())

        metadata = UDWalletMetadata(email=details.email, device_id=details.device_id)
        mpc_metadata = MPCWalletMetadata(
            provider=self.provider, metadata=metadata.model_dump_json(by_alias=True).encode()
        )
        return self._wallets.create_mpc_wallet(eth_address, mpc_metadata)

    def _clear_wallet_details(self, device_id: str) -> None:
        try:
            self._storage.clear(device_id)
        except StorageError as e:
            logger.error(f"Failed to clear stored details for device {device_id}: {e}")

    def _build_wallet_connector(self, details: ConnectedWalletDetails) -> MPCConnector:
        return self._connector_builder.build_wallet_connector(
            details, functools.partial(self.get_auth_tokens, details)
        )
