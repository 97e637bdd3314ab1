"""In-memory recovery job store and orchestration.

Each submitted job runs as its own asyncio task. That task is the only writer
of the job record after creation: it stores either a result or an error and
never leaves the job IN_PROGRESS once it settles. Jobs are pruned after the
retention window by a scheduled sweep.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from .models import JobResult, JobStatus, PollResponse, RecoveryRequest
from .recovery import RecoveryMint, run_recovery
from .settlement import SettlementBackend
from .types import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MintFactory = Callable[[str], RecoveryMint]
Pipeline = Callable[[RecoveryRequest, str], Awaitable[JobResult]]


@dataclass
class Job:
    id: str
    mint_url: str
    status: JobStatus = JobStatus.IN_PROGRESS
    created_at: float = field(default_factory=time.time)
    result: JobResult | None = None
    error: str | None = None

    def to_response(self) -> PollResponse:
        return PollResponse(status=self.status, result=self.result, error=self.error)


class JobStore:
    """Job records keyed by id.

    All mutations run on the event loop without an await in between, so a
    record is never observed half-written.
    """

    def __init__(self, retention_seconds: float = 3600) -> None:
        self.retention_seconds = retention_seconds
        self._jobs: dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self, mint_url: str) -> Job:
        job = Job(id=str(uuid.uuid4()), mint_url=mint_url)
        self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found", job_id=job_id)
        return job

    def complete(self, job_id: str, result: JobResult) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.IN_PROGRESS:
            return False
        job.result = result
        job.status = JobStatus.COMPLETED
        return True

    def fail(self, job_id: str, error: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.IN_PROGRESS:
            return False
        job.error = error
        job.status = JobStatus.ERROR
        return True

    def prune(self, now: float | None = None) -> int:
        """Remove jobs older than the retention window."""
        cutoff = (now if now is not None else time.time()) - self.retention_seconds
        expired = [job_id for job_id, job in self._jobs.items() if job.created_at < cutoff]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired jobs")
        return len(expired)


class JobOrchestrator:
    """Creates jobs, runs their pipelines in the background and sweeps results."""

    def __init__(
        self,
        store: JobStore,
        *,
        settlement: SettlementBackend,
        mint_factory: MintFactory,
        check_state_batch_size: int = 100,
        poll_prefix: str = "/api/recovery",
    ) -> None:
        self.store = store
        self.settlement = settlement
        self.mint_factory = mint_factory
        self.check_state_batch_size = check_state_batch_size
        self.poll_prefix = poll_prefix
        self._tasks: dict[str, asyncio.Task[None]] = {}

    async def _pipeline(self, request: RecoveryRequest, job_id: str) -> JobResult:
        mint = self.mint_factory(request.mint_url)
        try:
            return await run_recovery(
                request,
                job_id,
                mint=mint,
                settlement=self.settlement,
                check_state_batch_size=self.check_state_batch_size,
            )
        finally:
            aclose = getattr(mint, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _run(self, request: RecoveryRequest, job_id: str) -> None:
        try:
            result = await self._pipeline(request, job_id)
        except Exception as e:
            logger.exception(f"[{job_id}] Job failed: {e}")
            if not self.store.fail(job_id, str(e) or e.__class__.__name__):
                logger.warning(f"[{job_id}] Job record gone before failure was stored")
            return

        if self.store.complete(job_id, result):
            logger.info(
                f"[{job_id}] Job completed: {result.proofs} proofs, balance {result.balance}"
            )
        else:
            logger.warning(f"[{job_id}] Job record gone before result was stored")

    def submit(self, request: RecoveryRequest) -> tuple[str, str]:
        """Create a job and start its pipeline without waiting for it.

        Returns:
            Tuple of (job_id, poll_url)
        """
        job = self.store.create(request.mint_url)
        task = asyncio.create_task(self._run(request, job.id), name=f"recovery-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

        logger.info(
            f"[{job.id}] Job created: mint={request.mint_url} "
            f"keyset={request.keyset_id} batches={len(request.batches)}"
        )
        return job.id, f"{self.poll_prefix}/{job.id}"

    def poll(self, job_id: str) -> PollResponse:
        return self.store.get(job_id).to_response()

    async def sweep(self, job_id: str) -> str:
        """Sweep a completed job's settlement wallet into a token."""
        job = self.store.get(job_id)
        if job.status != JobStatus.COMPLETED or job.result is None or not job.result.access_key:
            raise ValidationError(
                "Job not completed or no wallet to sweep",
                job_id=job_id,
                status=job.status.value,
            )
        if job.result.balance <= 0:
            raise ValidationError("Wallet balance is 0, nothing to sweep", job_id=job_id)

        logger.info(f"[{job_id}] Sweeping wallet {job.result.wallet_name}")
        return await self.settlement.send_all(job.result.access_key)

    def prune(self) -> int:
        return self.store.prune()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait(self, job_id: str) -> None:
        """Wait for a job's pipeline to settle (no-op if it already has)."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight jobs, e.g. on shutdown. Jobs are never cancelled."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info(f"Waiting for {len(tasks)} in-flight jobs")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} jobs still running at shutdown")
