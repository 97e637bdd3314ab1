"""Request and response models for the recovery API (camelCase on the wire)."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .types import BlindedMessage

DEFAULT_GAP_LIMIT = 300
DEFAULT_BATCH_SIZE = 100


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SerializedBlindedMessage(WireModel):
    amount: int
    B_: str
    id: str

    def to_wire(self) -> BlindedMessage:
        return BlindedMessage(amount=self.amount, B_=self.B_, id=self.id)


class SerializedOutput(WireModel):
    blinded_message: SerializedBlindedMessage = Field(alias="blindedMessage")
    blinding_factor: str = Field(alias="blindingFactor")  # scalar as hex
    secret: str  # secret bytes as hex


class OutputBatch(WireModel):
    counter: int = Field(ge=0)
    outputs: list[SerializedOutput]


class KeysetModel(WireModel):
    id: str
    keys: dict[str, str]  # amount -> mint pubkey hex


class RecoveryRequest(WireModel):
    mint_url: str = Field(alias="mintUrl", min_length=1)
    keyset_id: str = Field(alias="keysetId", min_length=1)
    keyset: KeysetModel
    batches: list[OutputBatch]
    gap_limit: int = Field(default=DEFAULT_GAP_LIMIT, alias="gapLimit", gt=0)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, alias="batchSize", gt=0)


class JobStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class JobResult(WireModel):
    proofs: int
    total_proofs: int = Field(alias="totalProofs")
    balance: int
    last_counter: int = Field(alias="lastCounter")
    last_found_counter: int = Field(alias="lastFoundCounter")
    last_batch_had_signature: bool = Field(alias="lastBatchHadSignature")
    access_key: str = Field(default="", alias="accessKey")
    wallet_name: str = Field(default="", alias="walletName")
    exhausted: bool


class RecoveryStarted(WireModel):
    job_id: str = Field(alias="jobId")
    poll_url: str = Field(alias="pollUrl")


class PollResponse(WireModel):
    status: JobStatus
    result: JobResult | None = None
    error: str | None = None


class TokenResponse(WireModel):
    token: str


class SwapRequest(WireModel):
    token: str = Field(min_length=1)
    job_id: str | None = Field(default=None, alias="jobId")
