"""Cashu cryptographic primitives for BDHKE (Blind Diffie-Hellmann Key Exchange)."""

from __future__ import annotations

import hashlib
import secrets

from coincurve import PrivateKey, PublicKey

from .types import BlindedSignature, Proof, ServerError, ValidationError

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

DOMAIN_SEPARATOR = b"Secp256k1_HashToCurve_Cashu_"


def hash_to_curve(message: bytes) -> PublicKey:
    """Hash a message to a point on the secp256k1 curve (NUT-00).

    Y = PublicKey('02' || SHA256(msg_hash || counter)) where
    msg_hash = SHA256(DOMAIN_SEPARATOR || message) and counter is a
    little-endian uint32 incremented until a valid point is found.
    """
    msg_to_hash = hashlib.sha256(DOMAIN_SEPARATOR + message).digest()
    counter = 0
    while counter < 2**16:
        candidate = hashlib.sha256(msg_to_hash + counter.to_bytes(4, "little")).digest()
        try:
            return PublicKey(b"\x02" + candidate)
        except ValueError:
            counter += 1
    raise ServerError("No valid point found for hash_to_curve")


def proof_y(secret: str) -> str:
    """Y value of a proof secret as used by NUT-07 check state.

    The hash input is the UTF-8 encoding of the exact secret string.
    """
    return hash_to_curve(secret.encode("utf-8")).format(compressed=True).hex()


def _parse_point(point_hex: str, label: str) -> PublicKey:
    try:
        return PublicKey(bytes.fromhex(point_hex))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Malformed {label} point: {e}", point=label)


def _parse_scalar(scalar_hex: str) -> int:
    try:
        scalar = int(scalar_hex, 16)
    except (ValueError, TypeError):
        raise ValidationError("Malformed blinding factor", point="r")
    if not 0 < scalar < CURVE_ORDER:
        raise ValidationError("Blinding factor out of range", point="r")
    return scalar


def unblind_signature(C_: str, r: str, K: str) -> str:
    """Unblind a signature from the mint.

    Args:
        C_: Blinded signature from mint (compressed hex)
        r: Blinding factor used (hex scalar)
        K: Mint's public key for the signature amount (compressed hex)

    Returns:
        Unblinded signature C = C_ - r*K (compressed hex)
    """
    blinded = _parse_point(C_, "C_")
    mint_pubkey = _parse_point(K, "mint pubkey")
    scalar = _parse_scalar(r)

    # C_ - r*K == C_ + (n - r)*K
    neg_r = (CURVE_ORDER - scalar).to_bytes(32, "big")
    try:
        neg_rK = mint_pubkey.multiply(neg_r)
        C = PublicKey.combine_keys([blinded, neg_rK])
    except ValueError as e:
        raise ValidationError(f"Unblinding failed: {e}")
    return C.format(compressed=True).hex()


def decode_secret(secret_hex: str) -> str:
    """Hex encoded secret bytes to the secret string carried in the proof."""
    try:
        return bytes.fromhex(secret_hex).decode("utf-8")
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Malformed output secret: {e}")


def construct_proof(
    signature: BlindedSignature,
    blinding_factor: str,
    secret_hex: str,
    mint_pubkey: str,
) -> Proof:
    """Build a proof from a restored signature and the output that produced it."""
    return Proof(
        id=signature["id"],
        amount=signature["amount"],
        secret=decode_secret(secret_hex),
        C=unblind_signature(signature["C_"], blinding_factor, mint_pubkey),
    )


def blind_message(secret: str, r: bytes | None = None) -> tuple[str, str]:
    """Blind a message for the mint.

    Args:
        secret: The secret string to blind
        r: Optional blinding factor (will be generated if not provided)

    Returns:
        Tuple of (B_ hex, r hex)
    """
    Y = hash_to_curve(secret.encode("utf-8"))
    if r is None:
        r = random_blinding_factor()
    r_key = PrivateKey(r)
    # B_ = Y + r*G
    B_ = PublicKey.combine_keys([Y, r_key.public_key])
    return B_.format(compressed=True).hex(), r.hex()


def random_secret() -> str:
    """Random 32-byte secret in its standard 64 char hex string form."""
    return secrets.token_hex(32)


def random_blinding_factor() -> bytes:
    while True:
        r = secrets.token_bytes(32)
        if 0 < int.from_bytes(r, "big") < CURVE_ORDER:
            return r


def get_mint_pubkey_for_amount(keys: dict[str, str], amount: int) -> str | None:
    """Look up the mint public key for an amount in a keyset key map."""
    return keys.get(str(amount))
