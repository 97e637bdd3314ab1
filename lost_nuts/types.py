"""Type definitions and error kinds for the lost-nuts recovery service (NUT-00 shapes)."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, TypedDict


class Proof(TypedDict):
    """Unblinded ecash proof as carried in tokens and sent to the mint."""

    id: str
    amount: int
    secret: str
    C: str


# Standard currency units as per NUT-00 specification
CurrencyUnit = Literal[
    "btc",
    "sat",
    "msat",
    "usd",
    "eur",
    # Special units
    "auth",
]


class BlindedMessage(TypedDict):
    """Blinded message for mint operations."""

    amount: int
    B_: str  # hex encoded blinded message
    id: str  # keyset ID


class BlindedSignature(TypedDict):
    """Blinded signature response from mint."""

    amount: int
    C_: str  # hex encoded blinded signature
    id: str  # keyset ID


class ProofState(TypedDict, total=False):
    """Single entry of a NUT-07 check state response."""

    Y: str
    state: str  # "UNSPENT", "PENDING", "SPENT"
    witness: str


# ──────────────────────────────────────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────────────────────────────────────


class ErrorName(str, Enum):
    """Error kinds surfaced to API callers."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOTFOUND_ERROR = "NOTFOUND_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"


class AppError(Exception):
    """Base class for errors that carry an HTTP status and a kind."""

    status_code = 500
    name = ErrorName.SERVER_ERROR

    def __init__(self, message: str, **params: Any) -> None:
        self.message = message
        self.params = params
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "name": self.name.value,
            "message": self.message,
            "params": self.params or None,
        }


class ValidationError(AppError):
    """Malformed or out-of-policy input. Never retried."""

    status_code = 400
    name = ErrorName.VALIDATION_ERROR


class NotFoundError(AppError):
    status_code = 404
    name = ErrorName.NOTFOUND_ERROR


class ServerError(AppError):
    """Internal invariant violation."""

    status_code = 500
    name = ErrorName.SERVER_ERROR


class ServiceConnectionError(AppError):
    """A collaborator was unreachable, timed out or answered non-2xx."""

    status_code = 502
    name = ErrorName.CONNECTION_ERROR


class MintError(ServiceConnectionError):
    """Base exception for mint errors."""


class SettlementError(ServiceConnectionError):
    """Base exception for settlement wallet errors."""


class PaymentRequiredError(AppError):
    """Free quota exhausted and no payment token attached."""

    status_code = 402
    name = ErrorName.PAYMENT_REQUIRED

    def __init__(self, message: str, payment_request: str, **params: Any) -> None:
        super().__init__(message, **params)
        self.payment_request = payment_request


class RateLimitError(AppError):
    status_code = 429
    name = ErrorName.RATE_LIMIT_ERROR


# ──────────────────────────────────────────────────────────────────────────────
# Mint API responses
# ──────────────────────────────────────────────────────────────────────────────


class MintQuoteResponse(TypedDict, total=False):
    """Response from POST /v1/mint/quote/bolt11 endpoint."""

    quote: str
    request: str  # Lightning invoice
    amount: int
    unit: CurrencyUnit
    state: str
    expiry: int


class MeltQuoteResponse(TypedDict, total=False):
    """Response from POST /v1/melt/quote/bolt11 and /v1/melt/bolt11."""

    quote: str
    amount: int
    fee_reserve: int
    unit: CurrencyUnit
    paid: bool
    state: str
    expiry: int
    payment_preimage: str
    change: list[BlindedSignature]


class MintResponse(TypedDict):
    """Response from POST /v1/mint/bolt11 endpoint."""

    signatures: list[BlindedSignature]


class SwapResponse(TypedDict):
    """Response from POST /v1/swap endpoint."""

    signatures: list[BlindedSignature]


class CheckStateResponse(TypedDict):
    """Response from POST /v1/checkstate endpoint."""

    states: list[ProofState]


class RestoreResponse(TypedDict, total=False):
    """Response from POST /v1/restore endpoint."""

    outputs: list[BlindedMessage]
    signatures: list[BlindedSignature]
    promises: list[BlindedSignature]  # deprecated


class KeysetInfo(TypedDict, total=False):
    """Entry of GET /v1/keysets."""

    id: str
    unit: CurrencyUnit
    active: bool
    input_fee_ppk: int


class Keyset(TypedDict):
    """Individual keyset per NUT-01 specification."""

    id: str
    unit: CurrencyUnit
    keys: dict[str, str]  # amount -> compressed secp256k1 pubkey mapping
