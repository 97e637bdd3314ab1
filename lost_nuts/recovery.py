"""Recovery pipeline: restore scan, spent-proof filter, settlement deposit."""

from __future__ import annotations

import logging
from typing import Protocol

from .crypto import proof_y
from .models import JobResult, RecoveryRequest
from .scanner import GapLimitScanner, RestoreClient
from .settlement import SettlementBackend
from .token import encode_token_v4
from .types import Proof

logger = logging.getLogger(__name__)

UNSPENT = "UNSPENT"


class RecoveryMint(RestoreClient, Protocol):
    url: str

    async def check_proof_states(self, Ys: list[str], *, batch_size: int) -> dict[str, str]: ...


async def filter_unspent_proofs(
    mint: RecoveryMint, proofs: list[Proof], *, batch_size: int
) -> list[Proof]:
    """Keep only proofs the mint reports as UNSPENT.

    A proof whose Y is missing from the mint's answer is treated as spent.
    """
    if not proofs:
        return []

    ys = [proof_y(p["secret"]) for p in proofs]
    states = await mint.check_proof_states(ys, batch_size=batch_size)
    unspent = [p for p, y in zip(proofs, ys) if states.get(y) == UNSPENT]
    logger.info(f"Unspent proofs found: {len(unspent)} of {len(proofs)} ({mint.url})")
    return unspent


async def run_recovery(
    request: RecoveryRequest,
    job_id: str,
    *,
    mint: RecoveryMint,
    settlement: SettlementBackend,
    check_state_batch_size: int,
) -> JobResult:
    """Scan, filter and deposit recovered proofs for one job."""
    logger.info(
        f"[{job_id}] Starting recovery: mint={request.mint_url} "
        f"keyset={request.keyset.id} batches={len(request.batches)} "
        f"gap_limit={request.gap_limit} batch_size={request.batch_size}"
    )

    scanner = GapLimitScanner(
        mint,
        request.keyset.keys,
        gap_limit=request.gap_limit,
        batch_size=request.batch_size,
        keyset_id=request.keyset.id,
        job_id=job_id,
    )
    scan = await scanner.scan(request.batches)
    unspent = await filter_unspent_proofs(
        mint, scan.proofs, batch_size=check_state_batch_size
    )

    result = dict(
        proofs=len(unspent),
        total_proofs=len(scan.proofs),
        last_counter=scan.last_counter,
        last_found_counter=scan.last_found_counter,
        last_batch_had_signature=scan.last_batch_had_signature,
        exhausted=scan.exhausted,
    )

    if not unspent:
        logger.info(f"[{job_id}] No unspent proofs found")
        return JobResult(balance=0, **result)

    wallet = await settlement.create_wallet(f"lost-nuts-recovery-{job_id}")
    token = encode_token_v4(unspent, mint.url)
    balance = await settlement.receive_token(wallet["access_key"], token)
    logger.info(f"[{job_id}] Recovered {len(unspent)} proofs into {wallet['name']}: {balance}")

    if balance <= 0:
        return JobResult(balance=0, **result)
    return JobResult(
        balance=balance,
        access_key=wallet["access_key"],
        wallet_name=wallet["name"],
        **result,
    )
