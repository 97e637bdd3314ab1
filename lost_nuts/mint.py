"""
Cashu Mint API client wrapper."""

from __future__ import annotations

import logging
from typing import Any, cast

import httpx

from .types import (
    BlindedMessage,
    BlindedSignature,
    CheckStateResponse,
    CurrencyUnit,
    Keyset,
    KeysetInfo,
    MeltQuoteResponse,
    MintError,
    MintQuoteResponse,
    MintResponse,
    Proof,
    RestoreResponse,
    SwapResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


# ──────────────────────────────────────────────────────────────────────────────
# Mint API client
# ──────────────────────────────────────────────────────────────────────────────


class InvalidKeysetError(MintError):
    """Raised when keyset structure is invalid per NUT-01."""


class Mint:
    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        # Normalize URL by removing trailing slashes
        self.url = url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> Mint:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make HTTP request to mint."""
        logger.debug(f"Mint {method} {self.url}{path}")
        try:
            response = await self.client.request(method, f"{self.url}{path}", json=json)
        except httpx.HTTPError as e:
            raise MintError(
                f"Mint unreachable on {path}: {e!r}", mint_url=self.url, path=path
            ) from e

        if not response.is_success:
            raise MintError(
                f"Mint returned {response.status_code} on {path}: {response.text}",
                mint_url=self.url,
                path=path,
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MintError(
                f"Mint returned invalid JSON on {path}", mint_url=self.url, path=path
            ) from e

    # ───────────────────────── Restore & State ─────────────────────────────────

    async def restore(self, *, outputs: list[BlindedMessage]) -> RestoreResponse:
        """Restore signatures for previously signed blinded messages (NUT-09).

        Returns parallel `outputs` / `signatures` arrays. An empty result is a
        legitimate answer meaning none of the outputs were ever signed.
        """
        response = await self._request("POST", "/v1/restore", json={"outputs": outputs})
        signatures = response.get("signatures")
        if signatures is None:
            signatures = response.get("promises", [])
        return RestoreResponse(
            outputs=cast(list[BlindedMessage], response.get("outputs", [])),
            signatures=cast(list[BlindedSignature], signatures),
        )

    async def check_state(self, *, Ys: list[str]) -> CheckStateResponse:
        """Check if proofs are spent or pending."""
        return cast(
            CheckStateResponse,
            await self._request("POST", "/v1/checkstate", json={"Ys": Ys}),
        )

    async def check_proof_states(self, Ys: list[str], *, batch_size: int) -> dict[str, str]:
        """Check states of any number of proofs, `batch_size` Ys per request.

        Returns:
            Mapping of Y -> state. Ys the mint did not report are absent.
        """
        states: dict[str, str] = {}
        for i in range(0, len(Ys), batch_size):
            response = await self.check_state(Ys=Ys[i : i + batch_size])
            for entry in response.get("states", []):
                if "Y" in entry and "state" in entry:
                    states[entry["Y"]] = entry["state"]
        return states

    # ───────────────────────── Info & Keys ─────────────────────────────────

    async def get_keysets_info(self) -> list[KeysetInfo]:
        """Get all keyset IDs with their unit and active flag."""
        response = await self._request("GET", "/v1/keysets")
        return cast(list[KeysetInfo], response.get("keysets", []))

    async def get_keyset(self, id: str) -> Keyset:
        """Get keyset details."""
        response = await self._request("GET", f"/v1/keys/{id}")
        keysets = response.get("keysets") or []
        if not keysets or not isinstance(keysets[0].get("keys"), dict):
            raise InvalidKeysetError(
                f"Invalid keyset response for {id}", mint_url=self.url, keyset_id=id
            )
        return cast(Keyset, keysets[0])

    async def get_active_keyset(self, unit: CurrencyUnit = "sat") -> Keyset:
        """Get the first active keyset for a unit."""
        for info in await self.get_keysets_info():
            if info.get("active", True) and info.get("unit") == unit:
                return await self.get_keyset(info["id"])
        raise MintError(f"No active keysets found for unit '{unit}'", mint_url=self.url)

    # ───────────────────────── Minting (receive) ─────────────────────────────────

    async def create_mint_quote(
        self, *, amount: int, unit: CurrencyUnit = "sat"
    ) -> MintQuoteResponse:
        """Request a Lightning invoice to mint tokens."""
        return cast(
            MintQuoteResponse,
            await self._request(
                "POST", "/v1/mint/quote/bolt11", json={"unit": unit, "amount": amount}
            ),
        )

    async def mint(self, *, quote: str, outputs: list[BlindedMessage]) -> MintResponse:
        """Mint tokens after paying the Lightning invoice."""
        return cast(
            MintResponse,
            await self._request(
                "POST", "/v1/mint/bolt11", json={"quote": quote, "outputs": outputs}
            ),
        )

    # ───────────────────────── Swap ─────────────────────────────────

    async def swap(self, *, inputs: list[Proof], outputs: list[BlindedMessage]) -> SwapResponse:
        """Swap proofs for new blinded signatures (NUT-03). Spends the inputs."""
        return cast(
            SwapResponse,
            await self._request("POST", "/v1/swap", json={"inputs": inputs, "outputs": outputs}),
        )

    # ───────────────────────── Melting (send) ─────────────────────────────────

    async def create_melt_quote(
        self, request: str, *, unit: CurrencyUnit = "sat"
    ) -> MeltQuoteResponse:
        """Get a quote for paying a Lightning invoice."""
        return cast(
            MeltQuoteResponse,
            await self._request(
                "POST", "/v1/melt/quote/bolt11", json={"unit": unit, "request": request}
            ),
        )

    async def melt(self, *, quote: str, inputs: list[Proof]) -> MeltQuoteResponse:
        """Melt tokens to pay a Lightning invoice."""
        return cast(
            MeltQuoteResponse,
            await self._request(
                "POST", "/v1/melt/bolt11", json={"quote": quote, "inputs": inputs}
            ),
        )


def normalize_mint_url(url: str) -> str:
    return url.strip().rstrip("/")


def validate_mint_url(url: str) -> bool:
    """Validate that a mint URL has the correct format.

    Args:
        url: Mint URL to validate

    Returns:
        True if URL appears valid, False otherwise
    """
    if not url:
        return False
    return url.startswith("http://") or url.startswith("https://")
