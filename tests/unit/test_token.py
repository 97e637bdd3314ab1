"""Test token serialization (cashuA / cashuB) and NUT-18 payment requests."""

import base64
import json

import cbor2
import pytest

from lost_nuts.token import (
    PaymentRequest,
    decode_token,
    encode_token_v4,
)
from lost_nuts.types import Proof, ValidationError

C_HEX = "02" + "ab" * 32

PROOFS = [
    Proof(id="009a1f293253e41e", amount=2, secret="secret-1", C=C_HEX),
    Proof(id="009a1f293253e41e", amount=8, secret="secret-2", C=C_HEX),
    Proof(id="00ad268c4d1f5826", amount=1, secret="secret-3", C=C_HEX),
]


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


class TestTokenV4:
    def test_encode_decode(self) -> None:
        token = encode_token_v4(PROOFS, "https://mint.example.com", memo="recovered")

        assert token.startswith("cashuB")
        decoded = decode_token(token)
        assert decoded.mint == "https://mint.example.com"
        assert decoded.unit == "sat"
        assert decoded.memo == "recovered"
        assert decoded.amount == 11
        assert sorted(p["secret"] for p in decoded.proofs) == ["secret-1", "secret-2", "secret-3"]

    def test_groups_proofs_by_keyset(self) -> None:
        token = encode_token_v4(PROOFS, "https://mint.example.com")
        raw = token[6:] + "=" * ((-len(token[6:])) % 4)
        data = cbor2.loads(base64.urlsafe_b64decode(raw))

        assert [entry["i"].hex() for entry in data["t"]] == ["009a1f293253e41e", "00ad268c4d1f5826"]
        assert [len(entry["p"]) for entry in data["t"]] == [2, 1]
        assert data["t"][0]["p"][0]["c"] == bytes.fromhex(C_HEX)


class TestTokenV3:
    def test_decode_handcrafted(self) -> None:
        payload = {
            "token": [{"mint": "https://mint.example.com", "proofs": PROOFS[:2]}],
            "unit": "sat",
            "memo": "thanks",
        }
        token = "cashuA" + _b64(json.dumps(payload).encode())

        decoded = decode_token(token)
        assert decoded.mint == "https://mint.example.com"
        assert decoded.amount == 10
        assert decoded.memo == "thanks"

    def test_rejects_multi_mint(self) -> None:
        payload = {
            "token": [
                {"mint": "https://a.example.com", "proofs": PROOFS[:1]},
                {"mint": "https://b.example.com", "proofs": PROOFS[1:2]},
            ]
        }
        with pytest.raises(ValidationError, match="Multi-mint"):
            decode_token("cashuA" + _b64(json.dumps(payload).encode()))


class TestDecodeErrors:
    @pytest.mark.parametrize("token", ["", "hello", "cashuAnot-base64!!", "cashuBAAAA", "cashuC123"])
    def test_invalid_tokens(self, token: str) -> None:
        with pytest.raises(ValidationError):
            decode_token(token)


class TestPaymentRequest:
    def test_encode_fields(self) -> None:
        encoded = PaymentRequest(
            amount=100,
            unit="sat",
            id="b1f4c2",
            mints=["https://mint.example.com"],
            description="fee",
        ).encode()

        assert encoded.startswith("creqA")
        raw = encoded[5:] + "=" * ((-len(encoded[5:])) % 4)
        data = cbor2.loads(base64.urlsafe_b64decode(raw))
        assert data == {
            "i": "b1f4c2",
            "a": 100,
            "u": "sat",
            "s": True,
            "m": ["https://mint.example.com"],
            "d": "fee",
        }

    def test_decode(self) -> None:
        request = PaymentRequest.decode(PaymentRequest(amount=21, unit="sat").encode())
        assert request.amount == 21
        assert request.unit == "sat"
        assert request.single_use is True
        assert request.mints == []

    def test_decode_rejects_unknown_version(self) -> None:
        with pytest.raises(ValidationError):
            PaymentRequest.decode("creqB123")
