"""Custodial settlement wallet adapter (Ippon wallet API)."""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypedDict, cast

import httpx

from .types import SettlementError

logger = logging.getLogger(__name__)

DEFAULT_IPPON_BASE = "https://ippon.minibits.cash/v1"


class SettlementWallet(TypedDict, total=False):
    name: str
    access_key: str
    mint: str
    unit: str
    balance: int
    pending_balance: int


class SettlementBackend(Protocol):
    """Anything that can hold recovered funds and sweep them back to a token."""

    async def create_wallet(self, name: str, token: str | None = None) -> SettlementWallet: ...

    async def receive_token(self, access_key: str, token: str) -> int: ...

    async def get_wallet_info(self, access_key: str) -> SettlementWallet: ...

    async def send_all(self, access_key: str) -> str: ...


class IpponClient:
    """Ippon wallet API client."""

    def __init__(
        self,
        base_url: str = DEFAULT_IPPON_BASE,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        access_key: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_key}"} if access_key else {}
        logger.debug(f"Ippon {method} {path}")
        try:
            response = await self.client.request(
                method, f"{self.base_url}{path}", json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise SettlementError(f"Ippon unreachable on {path}: {e!r}", path=path) from e

        if not response.is_success:
            raise SettlementError(
                f"Ippon API error {response.status_code} on {path}: {response.text}",
                path=path,
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise SettlementError(f"Ippon returned invalid JSON on {path}", path=path) from e

    async def create_wallet(self, name: str, token: str | None = None) -> SettlementWallet:
        """Create a wallet, optionally receiving a token into it right away."""
        body: dict[str, Any] = {"name": name}
        if token is not None:
            body["token"] = token
        wallet = cast(SettlementWallet, await self._request("POST", "/wallet", json=body))
        logger.info(f"Settlement wallet created: {wallet.get('name')}")
        return wallet

    async def receive_token(self, access_key: str, token: str) -> int:
        """Deposit a token and return the new wallet balance."""
        data = await self._request(
            "POST", "/wallet/receive", json={"token": token}, access_key=access_key
        )
        balance = int(data.get("balance", 0))
        logger.debug(f"Token received, balance {balance}")
        return balance

    async def get_wallet_info(self, access_key: str) -> SettlementWallet:
        return cast(SettlementWallet, await self._request("GET", "/wallet", access_key=access_key))

    async def send_all(self, access_key: str) -> str:
        """Sweep the full wallet balance into a freshly denominated token."""
        info = await self.get_wallet_info(access_key)
        amount = int(info.get("balance", 0))
        unit = info.get("unit", "sat")
        logger.info(f"Sweeping wallet to token: {amount} {unit}")
        data = await self._request(
            "POST",
            "/wallet/send",
            json={"amount": amount, "unit": unit},
            access_key=access_key,
        )
        if not data.get("token"):
            raise SettlementError("Ippon send returned no token", path="/wallet/send")
        return data["token"]
