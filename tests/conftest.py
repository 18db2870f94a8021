"""
Pytest configuration and shared fixtures.

Provides a fake custody SDK, a routed httpx mock of the Wallets API and
canned account data.
"""

import json
import time
from typing import Any, Callable

import httpx
import pytest
from jose import jwt

from ud_mpc_wallet.config import PollingConfig, ServiceConfig, WalletsApiConfig
from ud_mpc_wallet.mpc.connector import KeyAlgorithm, KeyDescriptor, KeyStatus, SignatureStatus
from ud_mpc_wallet.mpc.storage import MemoryStore, MPCWalletsDataStorage

ETH_ADDRESS = "0x" + "ab" * 20
DESTINATION = "0x" + "cd" * 20
DEVICE_ID = "device-1"
EMAIL = "user@example.com"

# Well-known test key, never holds funds
PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def make_jwt(expires_in_secs: int = 3600, subject: str = "user") -> str:
    """HS256 JWT with an `exp` claim relative to now."""
    claims = {"sub": subject, "exp": int(time.time()) + expires_in_secs}
    return jwt.encode(claims, "test-secret", algorithm="HS256")


def tokens_payload(access_in: int = 3600, refresh_in: int = 7200, bootstrap_in: int = 86400) -> dict[str, str]:
    return {
        "accessToken": make_jwt(access_in, "access"),
        "refreshToken": make_jwt(refresh_in, "refresh"),
        "bootstrapToken": make_jwt(bootstrap_in, "bootstrap"),
    }


def asset_payload(asset_id: str, symbol: str, chain: str, address: str = ETH_ADDRESS, decimals: int | None = 18):
    balance = {"total": "1.5"}
    if decimals is not None:
        balance["decimals"] = decimals
    return {
        "type": "asset",
        "id": asset_id,
        "address": address,
        "blockchainAsset": {
            "id": f"ba-{asset_id}",
            "name": symbol,
            "symbol": symbol,
            "blockchain": {"id": chain, "name": chain},
        },
        "balance": balance,
    }


def assets_payload() -> dict[str, Any]:
    return {
        "items": [
            asset_payload("asset-eth", "ETH", "ETH"),
            asset_payload("asset-matic", "MATIC", "MATIC", address="0x" + "ef" * 20, decimals=None),
        ]
    }


class FakeSdk:
    """Scriptable stand-in for the custody SDK."""

    def __init__(
        self,
        request_id: str | None = "join-request-1",
        key_ready_after: int = 0,
        sign_statuses: list[SignatureStatus] | None = None,
        join_error: Exception | None = None,
    ) -> None:
        self.request_id = request_id
        self.key_ready_after = key_ready_after
        self.sign_statuses = list(sign_statuses or [SignatureStatus.COMPLETED])
        self.join_error = join_error
        self.key_checks = 0
        self.stop_calls = 0
        self.signed_tx_ids: list[str] = []

    async def request_join_existing_wallet(self, on_request_id: Callable[[str], None]) -> None:
        if self.join_error is not None:
            raise self.join_error
        if self.request_id is not None:
            on_request_id(self.request_id)

    def stop_join_wallet(self) -> None:
        self.stop_calls += 1

    def get_keys_status(self) -> list[KeyDescriptor]:
        self.key_checks += 1
        status = KeyStatus.READY if self.key_checks > self.key_ready_after else KeyStatus.INITIATED
        return [
            KeyDescriptor(KeyAlgorithm.MPC_EDDSA_ED25519, KeyStatus.READY),
            KeyDescriptor(KeyAlgorithm.MPC_ECDSA_SECP256K1, status),
        ]

    async def sign_transaction(self, tx_id: str) -> SignatureStatus:
        self.signed_tx_ids.append(tx_id)
        if len(self.sign_statuses) > 1:
            return self.sign_statuses.pop(0)
        return self.sign_statuses[0]


Response = tuple[int, Any] | Callable[[httpx.Request], httpx.Response]


class ApiRouter:
    """
    Routes mocked HTTP requests by (method, path).

    Paths under the Wallets API root are keyed without the `/wallet/v1/`
    prefix. Each route replays its responses in order and then keeps
    repeating the last one.
    """

    PREFIX = "/wallet/v1/"

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Response]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: Response) -> "ApiRouter":
        self.routes[(method, path)] = list(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path.removeprefix(self.PREFIX)
        queue = self.routes.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"code": "NOT_FOUND", "message": path})

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            return response(request)
        status, body = response
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, method: str, path: str) -> int:
        return sum(
            1
            for request in self.calls
            if request.method == method and request.url.path.removeprefix(self.PREFIX) == path
        )

    def bodies(self, method: str, path: str) -> list[Any]:
        return [
            json.loads(request.content) if request.content else None
            for request in self.calls
            if request.method == method and request.url.path.removeprefix(self.PREFIX) == path
        ]


@pytest.fixture
def polling() -> PollingConfig:
    return PollingConfig.immediate()


@pytest.fixture
def api_config() -> WalletsApiConfig:
    return WalletsApiConfig(base_url="https://wallets.test", portfolio_url="https://wallets.test/portfolio/{address}")


@pytest.fixture
def service_config() -> ServiceConfig:
    return ServiceConfig(action_poll_interval_secs=0.01)


@pytest.fixture
def router() -> ApiRouter:
    return ApiRouter()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore("app-password", iterations=1)


@pytest.fixture
def data_storage(memory_store) -> MPCWalletsDataStorage:
    return MPCWalletsDataStorage(memory_store)
