"""Cashu token (NUT-00 V3/V4) and payment request (NUT-18) serialization."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, cast

import cbor2

from .types import CurrencyUnit, Proof, ValidationError


@dataclass
class Token:
    """Decoded single-mint Cashu token."""

    mint: str
    proofs: list[Proof]
    unit: CurrencyUnit | None = None
    memo: str | None = None

    @property
    def amount(self) -> int:
        return sum(p["amount"] for p in self.proofs)


def _b64url_decode(encoded: str) -> bytes:
    # Add correct padding – (-len) % 4 equals 0,1,2,3
    encoded += "=" * ((-len(encoded)) % 4)
    return base64.urlsafe_b64decode(encoded)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def encode_token_v4(
    proofs: list[Proof], mint_url: str, unit: CurrencyUnit = "sat", memo: str | None = None
) -> str:
    """Serialize proofs into CashuB (V4) token format using CBOR."""
    # Group proofs by keyset ID for V4 format
    proofs_by_keyset: dict[str, list[Proof]] = {}
    for proof in proofs:
        proofs_by_keyset.setdefault(proof["id"], []).append(proof)

    tokens = []
    for keyset_id, keyset_proofs in proofs_by_keyset.items():
        tokens.append(
            {
                "i": bytes.fromhex(keyset_id),
                "p": [
                    {"a": p["amount"], "s": p["secret"], "c": bytes.fromhex(p["C"])}
                    for p in keyset_proofs
                ],
            }
        )

    token_data: dict[str, Any] = {"m": mint_url, "u": unit, "t": tokens}
    if memo:
        token_data["d"] = memo
    return f"cashuB{_b64url_encode(cbor2.dumps(token_data))}"


def decode_token(token: str) -> Token:
    """Parse a cashuA or cashuB token.

    Raises:
        ValidationError: If the token is not a well formed single-mint token
    """
    token = token.strip()
    if not token.startswith("cashu"):
        raise ValidationError("Invalid token format")

    try:
        if token.startswith("cashuA"):
            token_data = json.loads(_b64url_decode(token[6:]).decode())
            entries = token_data["token"]
            mints = {entry["mint"] for entry in entries}
            if len(mints) != 1:
                raise ValidationError("Multi-mint tokens are not supported")
            proofs = [
                Proof(id=p["id"], amount=int(p["amount"]), secret=p["secret"], C=p["C"])
                for entry in entries
                for p in entry["proofs"]
            ]
            return Token(
                mint=entries[0]["mint"],
                proofs=proofs,
                unit=cast("CurrencyUnit | None", token_data.get("unit")),
                memo=token_data.get("memo"),
            )

        if token.startswith("cashuB"):
            token_data = cbor2.loads(_b64url_decode(token[6:]))
            proofs = []
            # Each token in 't' has 'i' (keyset id) and 'p' (proofs)
            for token_entry in token_data["t"]:
                keyset_id = token_entry["i"].hex()
                for p in token_entry["p"]:
                    proofs.append(
                        Proof(id=keyset_id, amount=int(p["a"]), secret=p["s"], C=p["c"].hex())
                    )
            return Token(
                mint=token_data["m"],
                proofs=proofs,
                unit=cast("CurrencyUnit | None", token_data.get("u")),
                memo=token_data.get("d"),
            )
    except ValidationError:
        raise
    except Exception as e:
        raise ValidationError(f"Could not decode token: {e}")

    raise ValidationError(f"Unknown token version: {token[:7]}")


# ──────────────────────────────────────────────────────────────────────────────
# NUT-18 payment requests
# ──────────────────────────────────────────────────────────────────────────────


@dataclass
class PaymentRequest:
    """NUT-18 payment request without transports (payment travels in-band)."""

    amount: int
    unit: CurrencyUnit
    id: str | None = None
    mints: list[str] = field(default_factory=list)
    description: str | None = None
    single_use: bool = True

    def encode(self) -> str:
        data: dict[str, Any] = {}
        if self.id:
            data["i"] = self.id
        data["a"] = self.amount
        data["u"] = self.unit
        data["s"] = self.single_use
        if self.mints:
            data["m"] = list(self.mints)
        if self.description:
            data["d"] = self.description
        return f"creqA{_b64url_encode(cbor2.dumps(data))}"

    @classmethod
    def decode(cls, encoded: str) -> PaymentRequest:
        if not encoded.startswith("creqA"):
            raise ValidationError("Unsupported payment request version")
        try:
            data = cbor2.loads(_b64url_decode(encoded[5:]))
        except Exception as e:
            raise ValidationError(f"Could not decode payment request: {e}")
        return cls(
            amount=data.get("a", 0),
            unit=data.get("u", "sat"),
            id=data.get("i"),
            mints=list(data.get("m") or []),
            description=data.get("d"),
            single_use=bool(data.get("s", False)),
        )
