"""Test the Ippon settlement wallet client against a mocked HTTP transport."""

import json
from typing import Any

import httpx
import pytest

from lost_nuts.settlement import IpponClient
from lost_nuts.types import SettlementError

BASE = "https://ippon.example.com/v1"


class IpponDouble:
    """Records requests and answers like the Ippon wallet API."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, dict[str, Any] | None, str | None]] = []
        self.send_response: dict[str, Any] = {"token": "cashuBsent"}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append(
            (request.method, request.url.path, body, request.headers.get("authorization"))
        )
        if request.method == "POST" and request.url.path == "/v1/wallet":
            return httpx.Response(
                200, json={"name": body["name"], "access_key": "ak-1", "balance": 0}
            )
        if request.url.path == "/v1/wallet/receive":
            return httpx.Response(200, json={"balance": 42})
        if request.method == "GET" and request.url.path == "/v1/wallet":
            return httpx.Response(200, json={"name": "w", "balance": 42, "unit": "sat"})
        if request.url.path == "/v1/wallet/send":
            return httpx.Response(200, json=self.send_response)
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def ippon() -> IpponDouble:
    return IpponDouble()


@pytest.fixture
def client(ippon) -> IpponClient:
    return IpponClient(BASE + "/", client=httpx.AsyncClient(transport=httpx.MockTransport(ippon)))


class TestIpponClient:
    @pytest.mark.asyncio
    async def test_create_wallet(self, client, ippon) -> None:
        wallet = await client.create_wallet("lost-nuts-recovery-1")

        assert wallet["access_key"] == "ak-1"
        assert ippon.requests == [("POST", "/v1/wallet", {"name": "lost-nuts-recovery-1"}, None)]

    @pytest.mark.asyncio
    async def test_create_wallet_with_token(self, client, ippon) -> None:
        await client.create_wallet("swap", token="cashuBabc")
        assert ippon.requests[0][2] == {"name": "swap", "token": "cashuBabc"}

    @pytest.mark.asyncio
    async def test_receive_token_uses_bearer_auth(self, client, ippon) -> None:
        balance = await client.receive_token("ak-1", "cashuBabc")

        assert balance == 42
        assert ippon.requests == [
            ("POST", "/v1/wallet/receive", {"token": "cashuBabc"}, "Bearer ak-1")
        ]

    @pytest.mark.asyncio
    async def test_send_all_sends_full_balance(self, client, ippon) -> None:
        token = await client.send_all("ak-1")

        assert token == "cashuBsent"
        assert ippon.requests[0][:2] == ("GET", "/v1/wallet")
        assert ippon.requests[1] == (
            "POST",
            "/v1/wallet/send",
            {"amount": 42, "unit": "sat"},
            "Bearer ak-1",
        )

    @pytest.mark.asyncio
    async def test_send_all_without_token(self, client, ippon) -> None:
        ippon.send_response = {}
        with pytest.raises(SettlementError, match="no token"):
            await client.send_all("ak-1")

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "bad key"})

        client = IpponClient(BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(SettlementError) as exc_info:
            await client.receive_token("bad", "cashuBabc")

        assert exc_info.value.params["status"] == 401
        assert exc_info.value.status_code == 502
