"""
Wallets API Client Tests

Request shapes, error mapping and operation polling against a routed
httpx mock.
"""

import httpx
import pytest

from ud_mpc_wallet.config import PollingConfig
from ud_mpc_wallet.mpc.entities import Finished, MessageSigningType, SignMessageEncoding, Signed, TxReady
from ud_mpc_wallet.mpc.network import MPCConnectionNetworkService
from ud_mpc_wallet.types import ApiError, ErrorCode, MPCNetworkError

from .conftest import DESTINATION, ETH_ADDRESS, assets_payload, tokens_payload


# ==================== FIXTURES ====================

@pytest.fixture
def network(api_config, polling, router):
    return MPCConnectionNetworkService(api_config, polling, transport=router.transport())


def operation(status, vendor_tx_id=None, tx_hash=None, signature=None):
    body = {"id": "op-1", "status": status, "type": "SIGNATURE"}
    if vendor_tx_id or tx_hash:
        body["transaction"] = {"id": tx_hash, "externalVendorTransactionId": vendor_tx_id}
    if signature:
        body["result"] = {"signature": signature}
    return body


# ==================== BOOTSTRAP TESTS ====================

@pytest.mark.asyncio
async def test_submit_bootstrap_code(network, router):
    """Test code exchange for access token and device id"""
    router.add("POST", "auth/bootstrap", (200, {"accessToken": "boot", "deviceId": "dev-9"}))

    response = await network.submit_bootstrap_code("123456")

    assert response.access_token == "boot"
    assert response.device_id == "dev-9"
    assert router.bodies("POST", "auth/bootstrap") == [{"code": "123456"}]
    assert "authorization" not in router.calls[0].headers


@pytest.mark.asyncio
async def test_submit_incorrect_code(network, router):
    """Test a 400 on code submission means the code is wrong"""
    router.add("POST", "auth/bootstrap", (400, {"code": "INVALID_CODE"}))

    with pytest.raises(MPCNetworkError) as exc_info:
        await network.submit_bootstrap_code("000000")

    assert exc_info.value.code == ErrorCode.INCORRECT_CODE


@pytest.mark.asyncio
async def test_auth_new_device(network, router):
    """Test device authorisation body and bearer token"""
    router.add("POST", "devices/bootstrap", (200, None))

    await network.auth_new_device_with("req-1", "phrase", "boot")

    assert router.bodies("POST", "devices/bootstrap") == [
        {"walletJoinRequestId": "req-1", "recoveryPassphrase": "phrase"}
    ]
    assert router.calls[0].headers["authorization"] == "Bearer boot"


@pytest.mark.asyncio
async def test_auth_new_device_wrong_phrase(network, router):
    """Test a 400 on authorisation means the recovery phrase is wrong"""
    router.add("POST", "devices/bootstrap", (400, {"code": "BAD_REQUEST"}))

    with pytest.raises(MPCNetworkError) as exc_info:
        await network.auth_new_device_with("req-1", "wrong", "boot")

    assert exc_info.value.code == ErrorCode.INCORRECT_PASSWORD


@pytest.mark.asyncio
async def test_wait_for_key_materials_transaction(network, router):
    """Test setup transaction polling until it awaits the signature"""
    router.add(
        "GET", "tokens/setup",
        (200, {"transactionId": "tx-1", "status": "QUEUED"}),
        (200, {"transactionId": "tx-1", "status": "PENDING_SIGNATURE"}),
    )

    await network.wait_for_transaction_with_new_key_materials_ready("boot")

    assert router.count("GET", "tokens/setup") == 2


@pytest.mark.asyncio
async def test_key_materials_transaction_timeout(api_config, router):
    """Test setup transaction polling is bounded"""
    network = MPCConnectionNetworkService(
        api_config, PollingConfig(interval_secs=0, key_materials_tx_attempts=3), transport=router.transport()
    )
    router.add("GET", "tokens/setup", (200, {"transactionId": "tx-1", "status": "QUEUED"}))

    with pytest.raises(MPCNetworkError) as exc_info:
        await network.wait_for_transaction_with_new_key_materials_ready("boot")

    assert exc_info.value.code == ErrorCode.KEY_MATERIALS_TX_TIMEOUT
    assert router.count("GET", "tokens/setup") == 3


@pytest.mark.asyncio
async def test_confirm_retries_while_processing(network, router):
    """Test confirmation is repeated while the server is still processing"""
    router.add(
        "POST", "tokens/confirm",
        (400, {"code": "PROCESSING"}),
        (200, tokens_payload()),
    )

    tokens = await network.confirm_transaction_with_new_key_materials_signed("boot")

    assert not tokens.access_token.is_expired()
    assert router.count("POST", "tokens/confirm") == 2
    assert router.bodies("POST", "tokens/confirm")[0] == {"includeRefreshToken": True, "includeBootstrapToken": True}


@pytest.mark.asyncio
async def test_confirm_other_error_propagates(network, router):
    """Test non-processing failures are not retried"""
    router.add("POST", "tokens/confirm", (500, {"code": "INTERNAL"}))

    with pytest.raises(ApiError) as exc_info:
        await network.confirm_transaction_with_new_key_materials_signed("boot")

    assert exc_info.value.status_code == 500
    assert router.count("POST", "tokens/confirm") == 1


# ==================== TOKEN TESTS ====================

@pytest.mark.asyncio
async def test_refresh_token_unauthenticated(network, router):
    """Test token refresh sends the refresh token in the body only"""
    router.add("POST", "tokens/refresh", (200, tokens_payload()))

    await network.refresh_token("refresh-jwt")

    body = router.bodies("POST", "tokens/refresh")[0]
    assert body["refreshToken"] == "refresh-jwt"
    assert "authorization" not in router.calls[0].headers


@pytest.mark.asyncio
async def test_refresh_bootstrap_token(network, router):
    """Test bootstrap token exchange"""
    router.add("POST", "tokens/bootstrap", (200, {"accessToken": "new-boot", "deviceId": "dev-1"}))

    response = await network.refresh_bootstrap_token("bootstrap-jwt")

    assert response.access_token == "new-boot"
    assert router.bodies("POST", "tokens/bootstrap") == [{"bootstrapToken": "bootstrap-jwt"}]


# ==================== ACCOUNT TESTS ====================

@pytest.mark.asyncio
async def test_get_account_assets_with_balances(network, router):
    """Test balances are requested through the expand parameter"""
    router.add("GET", "accounts/acc-1/assets", (200, assets_payload()))

    response = await network.get_account_assets("acc-1", "access", include_balances=True)

    assert router.calls[0].url.params["$expand"] == "balance"
    assert [asset.chain_code for asset in response.items] == ["ETH", "MATIC"]
    assert response.items[0].balance.decimals == 18


@pytest.mark.asyncio
async def test_fetch_portfolio_uses_absolute_url(network, router):
    """Test portfolio lookups go to the configured portfolio endpoint"""
    router.add("GET", f"/portfolio/{ETH_ADDRESS}", (200, [
        {"address": ETH_ADDRESS, "symbol": "ETH", "balanceAmt": 1.25, "totalValueUsd": "3000", "walletType": "mpc"},
    ]))

    portfolio = await network.fetch_crypto_portfolio_for_mpc(ETH_ADDRESS, "access")

    assert portfolio[0].balance_amt == 1.25
    assert portfolio[0].total_value_usd == "3000"
    assert router.calls[0].url.host == "wallets.test"


# ==================== OPERATION TESTS ====================

@pytest.mark.asyncio
async def test_start_personal_sign(network, router):
    """Test personal sign request body"""
    router.add("POST", "accounts/acc-1/assets/asset-eth/signatures", (200, {"operation": operation("QUEUED")}))

    op = await network.start_message_signing(
        "access", "acc-1", "asset-eth", "hello", MessageSigningType.personal_sign(SignMessageEncoding.UTF8)
    )

    assert op.id == "op-1"
    assert router.bodies("POST", "accounts/acc-1/assets/asset-eth/signatures") == [
        {"message": "hello", "encoding": "utf8"}
    ]


@pytest.mark.asyncio
async def test_start_typed_data_sign(network, router):
    """Test typed data is hex-encoded and tagged as EIP-712"""
    router.add("POST", "accounts/acc-1/assets/asset-eth/signatures", (200, {"operation": operation("QUEUED")}))

    await network.start_message_signing("access", "acc-1", "asset-eth", "{}", MessageSigningType.typed())

    assert router.bodies("POST", "accounts/acc-1/assets/asset-eth/signatures") == [
        {"message": "0x7b7d", "type": "erc712", "encoding": "hex"}
    ]


@pytest.mark.asyncio
async def test_start_operation_without_operation(network, router):
    """Test responses missing the operation are rejected"""
    router.add("POST", "accounts/acc-1/assets/asset-eth/transfers", (200, {"unexpected": True}))

    with pytest.raises(MPCNetworkError) as exc_info:
        await network.start_asset_transfer("access", "acc-1", "asset-eth", DESTINATION, "1")

    assert exc_info.value.code == ErrorCode.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_operation_needs_signature(network, router):
    """Test a signature-required operation yields the vendor tx id"""
    router.add(
        "GET", "operations/op-1",
        (200, operation("QUEUED")),
        (200, operation("SIGNATURE_REQUIRED", vendor_tx_id="fb-tx-1")),
    )

    assert await network.wait_for_operation_ready_and_get_tx_id("access", "op-1") == TxReady("fb-tx-1")


@pytest.mark.asyncio
async def test_operation_signed_directly(network, router):
    """Test a completed signing operation yields the signature"""
    router.add("GET", "operations/op-1", (200, operation("COMPLETED", signature="0xsig")))

    assert await network.wait_for_operation_ready_and_get_tx_id("access", "op-1") == Signed("0xsig")


@pytest.mark.asyncio
async def test_operation_finished_directly(network, router):
    """Test a completed transfer operation yields the tx hash"""
    router.add("GET", "operations/op-1", (200, operation("COMPLETED", tx_hash="0xhash")))

    assert await network.wait_for_operation_ready_and_get_tx_id("access", "op-1") == Finished("0xhash")


@pytest.mark.asyncio
async def test_operation_missing_vendor_tx_id(network, router):
    """Test signature-required operations must name the vendor tx"""
    router.add("GET", "operations/op-1", (200, operation("SIGNATURE_REQUIRED")))

    with pytest.raises(MPCNetworkError) as exc_info:
        await network.wait_for_operation_ready_and_get_tx_id("access", "op-1")

    assert exc_info.value.code == ErrorCode.MISSING_VENDOR_TX_ID


@pytest.mark.asyncio
async def test_operation_failed(network, router):
    """Test failed operations stop polling"""
    router.add("GET", "operations/op-1", (200, operation("FAILED")))

    with pytest.raises(MPCNetworkError) as exc_info:
        await network.wait_for_operation_signed_and_get_tx_signature("access", "op-1")

    assert exc_info.value.code == ErrorCode.OPERATION_FAILED
    assert router.count("GET", "operations/op-1") == 1


@pytest.mark.asyncio
async def test_tx_hash_when_processing(network, router):
    """Test the tx hash is available once the operation is processing"""
    router.add("GET", "operations/op-1", (200, operation("PROCESSING", tx_hash="0xhash")))

    assert await network.wait_for_tx_completed_and_get_hash("access", "op-1") == "0xhash"


@pytest.mark.asyncio
async def test_transfer_estimations(network, router):
    """Test fee estimate request"""
    router.add("POST", "accounts/acc-1/assets/asset-eth/transfers/estimates", (200, {
        "priority": "MEDIUM", "status": "VALID", "networkFee": {"amount": "0.00042", "symbol": "ETH"},
    }))

    fee = await network.get_asset_transfer_estimations("access", "acc-1", "asset-eth", DESTINATION, "1")

    assert fee.network_fee.amount == "0.00042"


# ==================== TRANSPORT TESTS ====================

@pytest.mark.asyncio
async def test_transport_failure(api_config, polling):
    """Test connection errors become network errors"""
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    network = MPCConnectionNetworkService(api_config, polling, transport=httpx.MockTransport(handler))

    with pytest.raises(MPCNetworkError) as exc_info:
        await network.verify_access_token("access")

    assert exc_info.value.code == ErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_api_error_keeps_body(network, router):
    """Test non-2xx responses carry status and body"""
    router.add("GET", "tokens/verify", (403, {"code": "FORBIDDEN"}))

    with pytest.raises(ApiError) as exc_info:
        await network.verify_access_token("access")

    assert exc_info.value.status_code == 403
    assert b"FORBIDDEN" in exc_info.value.body
