"""Gap-limit restore scanner.

Walks caller supplied output batches in order, asks the mint to restore
signatures for each one and unblinds every match into a proof. Scanning stops
once ``ceil(gap_limit / batch_size)`` consecutive batches come back without a
usable signature. If the batches run out first the scan is *exhausted* and the
caller should resubmit batches starting after ``last_found_counter``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from .crypto import construct_proof, get_mint_pubkey_for_amount
from .types import BlindedMessage, BlindedSignature, Proof, RestoreResponse, ServerError

if TYPE_CHECKING:
    from .models import OutputBatch

logger = logging.getLogger(__name__)


class RestoreClient(Protocol):
    async def restore(self, *, outputs: list[BlindedMessage]) -> RestoreResponse: ...


class ScanState(str, Enum):
    SCANNING = "SCANNING"
    GAP_REACHED = "GAP_REACHED"
    EXHAUSTED = "EXHAUSTED"


@dataclass
class ScanResult:
    proofs: list[Proof] = field(default_factory=list)
    last_counter: int = 0
    last_found_counter: int = 0
    last_batch_had_signature: bool = False
    batches_scanned: int = 0
    state: ScanState = ScanState.SCANNING

    @property
    def exhausted(self) -> bool:
        return self.state == ScanState.EXHAUSTED


def required_empty_batches(gap_limit: int, batch_size: int) -> int:
    return math.ceil(gap_limit / batch_size)


class GapLimitScanner:
    """Sequential restore scan over a fixed list of output batches."""

    def __init__(
        self,
        mint: RestoreClient,
        keys: dict[str, str],
        *,
        gap_limit: int,
        batch_size: int,
        keyset_id: str | None = None,
        job_id: str | None = None,
    ) -> None:
        self.mint = mint
        self.keys = keys
        self.keyset_id = keyset_id
        self.job_id = job_id
        self.required_empty = required_empty_batches(gap_limit, batch_size)

    def _unblind_batch(
        self, batch: OutputBatch, signatures_by_B_: dict[str, BlindedSignature]
    ) -> list[tuple[int, Proof]]:
        found: list[tuple[int, Proof]] = []
        for offset, output in enumerate(batch.outputs):
            signature = signatures_by_B_.get(output.blinded_message.B_)
            if signature is None:
                continue
            mint_pubkey = get_mint_pubkey_for_amount(self.keys, signature["amount"])
            if not mint_pubkey:
                raise ServerError(
                    f"No mint pubkey for amount {signature['amount']}",
                    keyset_id=self.keyset_id,
                    amount=signature["amount"],
                )
            proof = construct_proof(
                signature, output.blinding_factor, output.secret, mint_pubkey
            )
            found.append((batch.counter + offset, proof))
        return found

    async def scan(self, batches: list[OutputBatch]) -> ScanResult:
        result = ScanResult(last_found_counter=batches[0].counter if batches else 0)
        empty_batches_found = 0

        for batch in batches:
            response = await self.mint.restore(
                outputs=[o.blinded_message.to_wire() for o in batch.outputs]
            )
            matched_outputs = response.get("outputs", [])
            signatures = response.get("signatures", [])

            found: list[tuple[int, Proof]] = []
            if matched_outputs and signatures:
                signatures_by_B_ = {
                    output["B_"]: signature
                    for output, signature in zip(matched_outputs, signatures)
                }
                found = self._unblind_batch(batch, signatures_by_B_)

            result.batches_scanned += 1
            result.last_counter = batch.counter + max(len(batch.outputs) - 1, 0)
            result.last_batch_had_signature = bool(found)

            if found:
                empty_batches_found = 0
                result.proofs.extend(proof for _, proof in found)
                result.last_found_counter = found[-1][0]
                logger.debug(
                    f"[{self.job_id}] Signatures found at counter {batch.counter}: "
                    f"{len(found)} in batch, {len(result.proofs)} total"
                )
                continue

            empty_batches_found += 1
            logger.debug(
                f"[{self.job_id}] Empty batch at counter {batch.counter} "
                f"({empty_batches_found}/{self.required_empty})"
            )
            if empty_batches_found >= self.required_empty:
                result.state = ScanState.GAP_REACHED
                logger.info(
                    f"[{self.job_id}] Gap limit reached at counter {batch.counter}, stopping"
                )
                return result

        result.state = ScanState.EXHAUSTED
        logger.warning(
            f"[{self.job_id}] All {len(batches)} batches exhausted before gap limit, "
            f"more proofs may exist after counter {result.last_found_counter}"
        )
        return result
