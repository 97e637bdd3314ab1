"""
Lost Nuts recovery API

FastAPI application: recovery submission, polling, sweeping and the
denomination swap helper.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .jobs import JobOrchestrator, JobStore, MintFactory
from .mint import Mint, validate_mint_url
from .models import PollResponse, RecoveryRequest, RecoveryStarted, SwapRequest, TokenResponse
from .payment import PaymentCollector, PaymentGate
from .ratelimit import RateLimiter
from .settlement import IpponClient, SettlementBackend
from .token import decode_token
from .types import AppError, ErrorName, PaymentRequiredError, ValidationError

logger = logging.getLogger(__name__)

PAYMENT_HEADER = "X-Cashu"


@dataclass
class Services:
    settings: Settings
    settlement: SettlementBackend
    orchestrator: JobOrchestrator
    gate: PaymentGate
    rate_limiter: RateLimiter
    scheduler: AsyncIOScheduler


def client_identity(request: Request, trust_proxy: bool) -> str:
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


def validate_recovery_request(body: RecoveryRequest, settings: Settings) -> None:
    if not validate_mint_url(body.mint_url):
        raise ValidationError("mintUrl must be an http(s) URL", mint_url=body.mint_url)
    if not body.batches:
        raise ValidationError("batches array must not be empty")
    if len(body.batches) > settings.max_batches:
        raise ValidationError(
            "Max batches number exceeded", batches=len(body.batches), max=settings.max_batches
        )
    for batch in body.batches:
        if len(batch.outputs) > settings.max_batch_size:
            raise ValidationError(
                f"Batch at counter {batch.counter} exceeds max batch size of "
                f"{settings.max_batch_size}",
                counter=batch.counter,
            )


def _schedule_pruning(services: Services) -> None:
    scheduler = services.scheduler

    async def prune_jobs() -> None:
        services.orchestrator.prune()

    async def prune_payment_entries() -> None:
        services.gate.prune()
        services.rate_limiter.prune()

    scheduler.add_job(
        prune_jobs,
        "interval",
        seconds=services.settings.job_prune_interval_seconds,
        id="prune_jobs",
        name="Prune expired recovery jobs",
        replace_existing=True,
    )
    scheduler.add_job(
        prune_payment_entries,
        "interval",
        seconds=services.settings.payment.prune_interval_seconds,
        id="prune_payment_entries",
        name="Prune stale payment quota entries",
        replace_existing=True,
    )


def create_app(
    settings: Settings | None = None,
    *,
    settlement: SettlementBackend | None = None,
    mint_factory: MintFactory | None = None,
    clock: Callable[[], float] | None = None,
) -> FastAPI:
    """Build the application. Collaborators can be injected for testing."""
    settings = settings or Settings.from_env()
    owned_ippon = None
    if settlement is None:
        owned_ippon = IpponClient(settings.ippon_base, timeout=settings.ippon_timeout)
        settlement = owned_ippon
    if mint_factory is None:
        mint_factory = lambda url: Mint(url, timeout=settings.mint_timeout)  # noqa: E731

    orchestrator = JobOrchestrator(
        JobStore(retention_seconds=settings.job_retention_seconds),
        settlement=settlement,
        mint_factory=mint_factory,
        check_state_batch_size=settings.max_batch_size,
    )
    collector = PaymentCollector(settings.payment, settlement, mint_factory)  # type: ignore[arg-type]
    clock_kwargs = {"clock": clock} if clock else {}
    services = Services(
        settings=settings,
        settlement=settlement,
        orchestrator=orchestrator,
        gate=PaymentGate(settings.payment, collector, **clock_kwargs),
        rate_limiter=RateLimiter(
            settings.rate_limit_recovery_max, settings.rate_limit_window_seconds, **clock_kwargs
        ),
        scheduler=AsyncIOScheduler(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _schedule_pruning(services)
        services.scheduler.start()
        logger.info("Pruning scheduler started")
        yield
        services.scheduler.shutdown(wait=False)
        await services.orchestrator.drain(timeout=settings.shutdown_grace_seconds)
        if owned_ippon is not None:
            await owned_ippon.aclose()

    app = FastAPI(
        title="Lost Nuts",
        description="Cashu ecash recovery from seed-derived blinded outputs",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", PAYMENT_HEADER],
        expose_headers=[PAYMENT_HEADER],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"[{request.method} {request.url.path}] {exc.name.value}: {exc.message} {exc.params}")
        headers = None
        if isinstance(exc, PaymentRequiredError):
            headers = {PAYMENT_HEADER: exc.payment_request}
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        logger.warning(f"[{request.method} {request.url.path}] invalid request: {errors}")
        return JSONResponse(
            status_code=400,
            content={
                "error": {
                    "statusCode": 400,
                    "name": ErrorName.VALIDATION_ERROR.value,
                    "message": "Invalid request body",
                    "params": {"errors": errors},
                }
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "statusCode": 500,
                    "name": ErrorName.SERVER_ERROR.value,
                    "message": "Internal server error",
                }
            },
        )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "jobsInFlight": services.orchestrator.in_flight}

    @app.post("/api/recovery", response_model=RecoveryStarted)
    async def submit_recovery(
        body: RecoveryRequest,
        request: Request,
        x_cashu: str | None = Header(default=None, alias=PAYMENT_HEADER),
    ) -> RecoveryStarted:
        identity = client_identity(request, settings.trust_proxy)
        services.rate_limiter.check(identity)
        validate_recovery_request(body, settings)
        await services.gate.check(identity, x_cashu)

        job_id, poll_url = services.orchestrator.submit(body)
        return RecoveryStarted(job_id=job_id, poll_url=poll_url)

    @app.get(
        "/api/recovery/{job_id}",
        response_model=PollResponse,
        response_model_exclude_none=True,
    )
    async def poll_recovery(job_id: str) -> PollResponse:
        return services.orchestrator.poll(job_id)

    @app.post("/api/recovery/{job_id}/sweep", response_model=TokenResponse)
    async def sweep_recovery(job_id: str, request: Request) -> TokenResponse:
        services.rate_limiter.check(client_identity(request, settings.trust_proxy))
        token = await services.orchestrator.sweep(job_id)
        return TokenResponse(token=token)

    @app.post("/api/swap", response_model=TokenResponse)
    async def swap(body: SwapRequest) -> TokenResponse:
        """Re-denominate a token through a temporary settlement wallet."""
        decode_token(body.token)
        name = f"lost-nuts-swap-{body.job_id}" if body.job_id else "lost-nuts-swap"
        logger.info(f"Starting denomination swap: {name}")
        wallet = await services.settlement.create_wallet(name, token=body.token)
        token = await services.settlement.send_all(wallet["access_key"])
        logger.info("Swap complete")
        return TokenResponse(token=token)

    return app
