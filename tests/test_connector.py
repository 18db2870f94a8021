"""
MPC Connector Tests

Join ceremony, key readiness polling and co-signing over a fake SDK.
"""

import threading
from unittest.mock import AsyncMock, Mock

import pytest

from ud_mpc_wallet.config import PollingConfig
from ud_mpc_wallet.mpc.connector import (
    DefaultFireblocksConnectorBuilder,
    FireblocksConnector,
    KeyAlgorithm,
    RPCMessageRelay,
    SignatureStatus,
)
from ud_mpc_wallet.mpc.entities import AuthTokens, ConnectedWalletDetails, WalletAccountWithAssets
from ud_mpc_wallet.types import ConnectorError, ErrorCode

from .conftest import DEVICE_ID, EMAIL, FakeSdk, make_jwt


# ==================== FIXTURES ====================

@pytest.fixture
def fast_polling():
    return PollingConfig(interval_secs=0, key_ready_attempts=3, sign_attempts=3, join_wallet_timeout_secs=0.05)


# ==================== JOIN TESTS ====================

@pytest.mark.asyncio
async def test_join_returns_request_id(fast_polling):
    """Test the request id delivered by the SDK callback is returned"""
    connector = FireblocksConnector(DEVICE_ID, FakeSdk(request_id="req-42"), fast_polling)

    assert await connector.request_join_existing_wallet() == "req-42"


@pytest.mark.asyncio
async def test_join_callback_from_other_thread(fast_polling):
    """Test the SDK may report the request id from a worker thread"""
    sdk = FakeSdk()

    async def join_from_thread(on_request_id):
        worker = threading.Thread(target=on_request_id, args=("req-thread",))
        worker.start()
        worker.join()

    sdk.request_join_existing_wallet = join_from_thread
    connector = FireblocksConnector(DEVICE_ID, sdk, fast_polling)

    assert await connector.request_join_existing_wallet() == "req-thread"


@pytest.mark.asyncio
async def test_join_timeout_stops_ceremony(fast_polling):
    """Test no request id within the timeout stops the join flow"""
    sdk = FakeSdk(request_id=None)
    connector = FireblocksConnector(DEVICE_ID, sdk, fast_polling)

    with pytest.raises(ConnectorError) as exc_info:
        await connector.request_join_existing_wallet()

    assert exc_info.value.code == ErrorCode.JOIN_WALLET_TIMEOUT
    assert sdk.stop_calls == 1


@pytest.mark.asyncio
async def test_join_sdk_failure(fast_polling):
    """Test SDK errors during join are reported"""
    connector = FireblocksConnector(DEVICE_ID, FakeSdk(join_error=RuntimeError("boom")), fast_polling)

    with pytest.raises(ConnectorError) as exc_info:
        await connector.request_join_existing_wallet()

    assert exc_info.value.code == ErrorCode.JOIN_WALLET_FAILED


# ==================== KEY READINESS TESTS ====================

@pytest.mark.asyncio
async def test_key_ready_after_polling(fast_polling):
    """Test polling continues until the ECDSA key is ready"""
    sdk = FakeSdk(key_ready_after=2)
    connector = FireblocksConnector(DEVICE_ID, sdk, fast_polling)

    await connector.wait_for_key_is_ready()

    assert sdk.key_checks == 3


@pytest.mark.asyncio
async def test_key_never_ready(fast_polling):
    """Test readiness polling is bounded"""
    sdk = FakeSdk(key_ready_after=10)
    connector = FireblocksConnector(DEVICE_ID, sdk, fast_polling)

    with pytest.raises(ConnectorError) as exc_info:
        await connector.wait_for_key_is_ready()

    assert exc_info.value.code == ErrorCode.KEY_TIMEOUT
    assert sdk.key_checks == 3


def test_is_key_ready_per_algorithm(fast_polling):
    """Test readiness is checked for the requested algorithm only"""
    connector = FireblocksConnector(DEVICE_ID, FakeSdk(key_ready_after=5), fast_polling)

    assert connector.is_key_ready(KeyAlgorithm.MPC_EDDSA_ED25519)
    assert not connector.is_key_ready(KeyAlgorithm.MPC_ECDSA_SECP256K1)


# ==================== SIGNING TESTS ====================

@pytest.mark.asyncio
async def test_sign_until_completed(fast_polling):
    """Test signing retries pending statuses and stops the join flow first"""
    sdk = FakeSdk(sign_statuses=[SignatureStatus.PENDING, SignatureStatus.STARTED, SignatureStatus.COMPLETED])
    connector = FireblocksConnector(DEVICE_ID, sdk, fast_polling)

    await connector.sign_transaction_with("tx-1")

    assert sdk.signed_tx_ids == ["tx-1", "tx-1", "tx-1"]
    assert sdk.stop_calls == 1


@pytest.mark.asyncio
async def test_sign_gives_up(fast_polling):
    """Test signing is bounded"""
    sdk = FakeSdk(sign_statuses=[SignatureStatus.ERROR])
    connector = FireblocksConnector(DEVICE_ID, sdk, fast_polling)

    with pytest.raises(ConnectorError) as exc_info:
        await connector.sign_transaction_with("tx-1")

    assert exc_info.value.code == ErrorCode.SIGN_TIMEOUT
    assert len(sdk.signed_tx_ids) == 3


# ==================== BUILDER TESTS ====================

@pytest.mark.asyncio
async def test_bootstrap_connector_relays_with_fixed_token(fast_polling):
    """Test bootstrap connectors send SDK messages with the bootstrap access token"""
    send = AsyncMock(return_value={"ok": True})
    relays = []

    def factory(device_id, relay, key_storage):
        relays.append(relay)
        return FakeSdk()

    builder = DefaultFireblocksConnectorBuilder(factory, send, polling=fast_polling)
    connector = builder.build_bootstrap_connector(DEVICE_ID, "boot-access")

    assert connector.device_id == DEVICE_ID
    assert await relays[0].handle_outgoing_message({"m": 1}) == {"ok": True}
    send.assert_awaited_once_with("boot-access", {"m": 1})


@pytest.mark.asyncio
async def test_wallet_connector_asks_for_token_per_message(fast_polling):
    """Test steady-state connectors fetch a token for every message"""
    send = AsyncMock()
    token_provider = AsyncMock(side_effect=["t1", "t2"])
    relays = []

    def factory(device_id, relay, key_storage):
        relays.append(relay)
        return FakeSdk()

    tokens = AuthTokens(access_token=make_jwt(), refresh_token=make_jwt(), bootstrap_token=make_jwt())
    account = WalletAccountWithAssets(type="account", id="acc-1", assets=[])
    details = ConnectedWalletDetails(
        email=EMAIL, device_id=DEVICE_ID, tokens=tokens, first_account=account, accounts=[account]
    )
    builder = DefaultFireblocksConnectorBuilder(factory, send, polling=fast_polling)
    builder.build_wallet_connector(details, token_provider)

    await relays[0].handle_outgoing_message("a")
    await relays[0].handle_outgoing_message("b")

    assert [c.args for c in send.await_args_list] == [("t1", "a"), ("t2", "b")]


def test_builder_wraps_factory_errors(fast_polling):
    """Test SDK initialisation failures are reported as connector errors"""
    factory = Mock(side_effect=RuntimeError("no sdk"))
    builder = DefaultFireblocksConnectorBuilder(factory, AsyncMock(), polling=fast_polling)

    with pytest.raises(ConnectorError) as exc_info:
        builder.build_bootstrap_connector(DEVICE_ID, "token")

    assert exc_info.value.code == ErrorCode.UNKNOWN


@pytest.mark.asyncio
async def test_relay_with_fixed_token():
    """Test the fixed-token relay"""
    send = AsyncMock(return_value=None)

    await RPCMessageRelay.with_fixed_token(send, "tok").handle_outgoing_message("payload")

    send.assert_awaited_once_with("tok", "payload")
