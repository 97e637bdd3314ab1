"""Payment gate for the recovery service.

The first ``free_requests`` submissions per identity inside a window are free.
After that a submission must carry a Cashu token (``X-Cashu`` header). Missing
tokens are answered with a NUT-18 payment request. Accepted tokens are
redeemed at their mint before the request is let through, so a token only
ever pays once. They are then collected into the settlement wallet, directly
or through an inter-mint Lightning exchange when the token comes from a
different mint than the collection mint.
"""

from __future__ import annotations

import logging
import math
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from .crypto import blind_message, construct_proof, random_secret
from .denominations import DenominationSystem
from .mint import Mint, normalize_mint_url
from .settlement import SettlementBackend
from .token import PaymentRequest, Token, decode_token, encode_token_v4
from .types import (
    BlindedMessage,
    BlindedSignature,
    CurrencyUnit,
    Keyset,
    KeysetInfo,
    MeltQuoteResponse,
    MintQuoteResponse,
    MintError,
    MintResponse,
    PaymentRequiredError,
    Proof,
    ServerError,
    ServiceConnectionError,
    SwapResponse,
    ValidationError,
)

logger = logging.getLogger(__name__)

PAYMENT_DESCRIPTION = "Lost nuts recovery service fee"


class ExchangeMint(Protocol):
    url: str

    async def create_mint_quote(self, *, amount: int, unit: CurrencyUnit = "sat") -> MintQuoteResponse: ...

    async def mint(self, *, quote: str, outputs: list[BlindedMessage]) -> MintResponse: ...

    async def create_melt_quote(self, request: str, *, unit: CurrencyUnit = "sat") -> MeltQuoteResponse: ...

    async def melt(self, *, quote: str, inputs: list[Proof]) -> MeltQuoteResponse: ...

    async def get_active_keyset(self, unit: CurrencyUnit = "sat") -> Keyset: ...

    async def get_keysets_info(self) -> list[KeysetInfo]: ...

    async def swap(self, *, inputs: list[Proof], outputs: list[BlindedMessage]) -> SwapResponse: ...

    async def aclose(self) -> None: ...


@dataclass
class PaymentConfig:
    amount: int = 100
    unit: CurrencyUnit = "sat"
    free_requests: int = 1
    window_seconds: float = 3600
    accepted_mints: list[str] = field(default_factory=list)
    collection_mint: str = ""
    collection_access_key: str = ""
    fee_reserve_percent: float = 0.05

    @property
    def prune_interval_seconds(self) -> float:
        return max(self.window_seconds / 2, 60)


@dataclass
class IpEntry:
    first_request_at: float
    count: int


# ──────────────────────────────────────────────────────────────────────────────
# Settlement
# ──────────────────────────────────────────────────────────────────────────────


class PaymentCollector:
    """Moves accepted payment tokens into the collection wallet."""

    def __init__(
        self,
        config: PaymentConfig,
        settlement: SettlementBackend,
        mint_factory: Callable[[str], ExchangeMint] = Mint,
    ) -> None:
        self.config = config
        self.settlement = settlement
        self.mint_factory = mint_factory

    async def collect(self, token: Token) -> None:
        """Redeem a payment token so it cannot be replayed, then deposit it.

        Raises:
            ValidationError: The token's mint rejects its proofs (forged or spent)
        """
        collection_key = self.config.collection_access_key
        collection_mint = normalize_mint_url(self.config.collection_mint)

        if collection_key and collection_mint and normalize_mint_url(token.mint) != collection_mint:
            logger.info(f"Starting inter-mint exchange: {token.mint} -> {collection_mint}")
            await self.inter_mint_exchange(token, collection_mint, collection_key)
            return

        fresh_token = await self.redeem(token)
        if not collection_key:
            logger.warning(
                "PAYMENT_COLLECTION_ACCESS_KEY not configured, skipping deposit of redeemed "
                f"payment: {fresh_token}"
            )
            return

        balance = await self.settlement.receive_token(collection_key, fresh_token)
        logger.info(f"Payment deposited directly, collection balance {balance}")

    async def redeem(self, token: Token) -> str:
        """Swap the token's proofs at its mint for fresh ones.

        The swap spends the original proofs, so a token is accepted at most once.

        Returns:
            Encoded V4 token holding the fresh proofs
        """
        unit = self.config.unit
        mint = self.mint_factory(token.mint)
        try:
            keyset = await mint.get_active_keyset(unit)
            fee_rates = {
                info["id"]: int(info.get("input_fee_ppk", 0) or 0)
                for info in await mint.get_keysets_info()
            }
            fee = (sum(fee_rates.get(p["id"], 0) for p in token.proofs) + 999) // 1000
            amount = token.amount - fee
            if amount <= 0:
                raise ValidationError(
                    f"Payment token does not cover the mint's input fee of {fee} {unit}",
                    fee=fee,
                )

            outputs, secrets_hex, blinding_factors = self._blind_outputs(keyset, amount)
            try:
                response = await mint.swap(inputs=token.proofs, outputs=outputs)
            except MintError as e:
                raise ValidationError(
                    "Payment token is invalid or already spent",
                    mint_url=token.mint,
                    status=e.params.get("status"),
                ) from e

            proofs = self._unblind(
                mint, keyset, outputs, response.get("signatures", []), secrets_hex, blinding_factors
            )
        finally:
            await mint.aclose()

        logger.info(f"Payment token redeemed at mint: {token.mint} proofs={len(proofs)}")
        return encode_token_v4(proofs, mint.url, unit)

    async def inter_mint_exchange(
        self, token: Token, collection_mint_url: str, collection_key: str
    ) -> None:
        unit = self.config.unit
        mint_amount = math.floor(self.config.amount * (1 - self.config.fee_reserve_percent))

        collection_mint = self.mint_factory(collection_mint_url)
        source_mint = self.mint_factory(token.mint)
        try:
            mint_quote = await collection_mint.create_mint_quote(amount=mint_amount, unit=unit)
            logger.debug(f"Mint quote {mint_quote['quote']} for {mint_amount} {unit}")

            melt_quote = await source_mint.create_melt_quote(mint_quote["request"], unit=unit)
            needed = melt_quote["amount"] + melt_quote.get("fee_reserve", 0)
            if token.amount < needed:
                raise ValidationError(
                    f"Insufficient proofs for inter-mint exchange: have {token.amount} {unit}, "
                    f"need {needed} {unit} ({melt_quote['amount']} + "
                    f"{melt_quote.get('fee_reserve', 0)} fee reserve)",
                    source_mint=token.mint,
                    proofs_total=token.amount,
                    needed=needed,
                )

            try:
                melt_result = await source_mint.melt(
                    quote=melt_quote["quote"], inputs=token.proofs
                )
            except MintError as e:
                if e.params.get("status") == 400:
                    raise ValidationError(
                        "Payment token is invalid or already spent", mint_url=token.mint
                    ) from e
                raise
            state = melt_result.get("state") or ("PAID" if melt_result.get("paid") else None)
            if state != "PAID":
                raise ServiceConnectionError(
                    f"Lightning payment failed during inter-mint exchange (state: {state})",
                    quote=melt_quote["quote"],
                    mint_url=token.mint,
                )
            logger.info(f"Lightning payment successful for mint quote {mint_quote['quote']}")

            # The invoice is paid at this point. Collection failures must not fail
            # the payer's request; they are left for manual reconciliation.
            try:
                proofs = await self._mint_proofs(collection_mint, mint_amount, mint_quote["quote"])
                new_token = encode_token_v4(proofs, collection_mint.url, unit)
                balance = await self.settlement.receive_token(collection_key, new_token)
                logger.info(f"Inter-mint exchange complete: {mint_amount} {unit}, balance {balance}")
            except Exception as e:
                logger.error(
                    f"Failed to collect at collection mint, manual recovery needed: "
                    f"quote={mint_quote['quote']} mint={collection_mint_url} error={e}"
                )
        finally:
            await source_mint.aclose()
            await collection_mint.aclose()

    async def _mint_proofs(self, mint: ExchangeMint, amount: int, quote: str) -> list[Proof]:
        keyset = await mint.get_active_keyset(self.config.unit)
        outputs, secrets_hex, blinding_factors = self._blind_outputs(keyset, amount)
        response = await mint.mint(quote=quote, outputs=outputs)
        return self._unblind(
            mint, keyset, outputs, response.get("signatures", []), secrets_hex, blinding_factors
        )

    @staticmethod
    def _blind_outputs(
        keyset: Keyset, amount: int
    ) -> tuple[list[BlindedMessage], list[str], list[str]]:
        denominations = DenominationSystem.split_amount(
            amount, DenominationSystem.get_keyset_denominations(keyset)
        )

        outputs: list[BlindedMessage] = []
        secrets_hex: list[str] = []
        blinding_factors: list[str] = []
        for denom in denominations:
            secret = random_secret()
            B_, r = blind_message(secret)
            outputs.append(BlindedMessage(amount=denom, B_=B_, id=keyset["id"]))
            secrets_hex.append(secret.encode("utf-8").hex())
            blinding_factors.append(r)
        return outputs, secrets_hex, blinding_factors

    @staticmethod
    def _unblind(
        mint: ExchangeMint,
        keyset: Keyset,
        outputs: list[BlindedMessage],
        signatures: list[BlindedSignature],
        secrets_hex: list[str],
        blinding_factors: list[str],
    ) -> list[Proof]:
        if len(signatures) != len(outputs):
            raise ServerError(
                f"Mint returned {len(signatures)} signatures for {len(outputs)} outputs",
                mint_url=mint.url,
            )

        proofs = []
        for signature, secret_hex, r in zip(signatures, secrets_hex, blinding_factors):
            mint_pubkey = keyset["keys"].get(str(signature["amount"]))
            if not mint_pubkey:
                raise ServerError(f"No mint pubkey for amount {signature['amount']}")
            proofs.append(construct_proof(signature, r, secret_hex, mint_pubkey))
        return proofs


# ──────────────────────────────────────────────────────────────────────────────
# Gate
# ──────────────────────────────────────────────────────────────────────────────


class PaymentGate:
    """Per-identity free quota tracking and payment verification."""

    def __init__(
        self,
        config: PaymentConfig,
        collector: PaymentCollector,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.collector = collector
        self.clock = clock
        self._entries: dict[str, IpEntry] = {}

    def entry(self, identity: str) -> IpEntry | None:
        return self._entries.get(identity)

    def build_payment_request(self) -> str:
        return PaymentRequest(
            amount=self.config.amount,
            unit=self.config.unit,
            id=secrets.token_hex(8),
            mints=list(self.config.accepted_mints),
            description=PAYMENT_DESCRIPTION,
            single_use=True,
        ).encode()

    def _payment_required_message(self) -> str:
        free = self.config.free_requests
        minutes = self.config.window_seconds / 60
        return (
            f"Payment of {self.config.amount} {self.config.unit} required after "
            f"{free} free {'recovery' if free == 1 else 'recoveries'} per {minutes:g} minutes"
        )

    def verify_token(self, encoded: str) -> Token:
        """Decode a payment token and check it against the payment policy."""
        token = decode_token(encoded)

        accepted = [normalize_mint_url(m) for m in self.config.accepted_mints]
        if accepted and normalize_mint_url(token.mint) not in accepted:
            raise ValidationError("Payment token mint not accepted", mint=token.mint)

        if token.unit and token.unit != self.config.unit:
            raise ValidationError(
                f"Payment token unit must be '{self.config.unit}'", unit=token.unit
            )

        if token.amount < self.config.amount:
            raise ValidationError(
                f"Insufficient payment: got {token.amount} {self.config.unit}, "
                f"need {self.config.amount} {self.config.unit}",
                total_amount=token.amount,
                required=self.config.amount,
            )
        return token

    async def check(self, identity: str, payment_token: str | None) -> None:
        """Admit a request from `identity` or raise.

        Raises:
            PaymentRequiredError: Quota used up and no token attached
            ValidationError: Token attached but not acceptable
        """
        now = self.clock()
        entry = self._entries.get(identity)

        if entry is None or now - entry.first_request_at >= self.config.window_seconds:
            self._entries[identity] = IpEntry(first_request_at=now, count=1)
            logger.debug(f"Free recovery granted (new window): {identity}")
            return

        if entry.count < self.config.free_requests:
            entry.count += 1
            logger.debug(f"Free recovery granted: {identity} count={entry.count}")
            return

        payment_token = (payment_token or "").strip()
        if not payment_token:
            logger.info(f"Payment required, no token provided: {identity}")
            raise PaymentRequiredError(
                self._payment_required_message(),
                payment_request=self.build_payment_request(),
            )

        token = self.verify_token(payment_token)
        await self.collector.collect(token)

        entry.count += 1
        logger.info(
            f"Payment accepted, recovery allowed: {identity} "
            f"amount={token.amount} count={entry.count}"
        )

    def prune(self) -> int:
        """Drop identities whose window has expired."""
        cutoff = self.clock() - self.config.window_seconds
        stale = [k for k, e in self._entries.items() if e.first_request_at < cutoff]
        for identity in stale:
            del self._entries[identity]
        if stale:
            logger.debug(f"Pruned {len(stale)} stale payment entries")
        return len(stale)
