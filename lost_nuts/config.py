"""Service configuration loaded from environment variables.

A `.env` file in the working directory is read first; real environment
variables take precedence over it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .payment import PaymentConfig


def _env_list(name: str) -> list[str]:
    """Comma separated env var as a de-duplicated list, order preserved."""
    items = [item.strip() for item in os.getenv(name, "").split(",")]
    return list(dict.fromkeys(item for item in items if item))


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3003
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    trust_proxy: bool = False

    # Recovery request limits
    max_batches: int = 50
    max_batch_size: int = 100

    # Job store
    job_retention_seconds: float = 3600
    job_prune_interval_seconds: float = 600
    shutdown_grace_seconds: float = 30

    # Collaborators
    mint_timeout: float = 30
    ippon_base: str = "https://ippon.minibits.cash/v1"
    ippon_timeout: float = 30

    # Route level rate limit for recovery and sweep
    rate_limit_recovery_max: int = 5
    rate_limit_window_seconds: float = 60

    payment: PaymentConfig = field(default_factory=PaymentConfig)

    def __post_init__(self) -> None:
        positive = {
            "MAX_BATCHES": self.max_batches,
            "MAX_BATCH_SIZE": self.max_batch_size,
            "JOB_RETENTION_SECONDS": self.job_retention_seconds,
            "JOB_PRUNE_INTERVAL_SECONDS": self.job_prune_interval_seconds,
            "MINT_TIMEOUT": self.mint_timeout,
            "IPPON_TIMEOUT": self.ippon_timeout,
            "RATE_LIMIT_RECOVERY_MAX": self.rate_limit_recovery_max,
            "RATE_LIMIT_WINDOW_SECONDS": self.rate_limit_window_seconds,
            "PAYMENT_AMOUNT_SAT": self.payment.amount,
            "PAYMENT_WINDOW_SECONDS": self.payment.window_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        non_negative = {
            "SHUTDOWN_GRACE_SECONDS": self.shutdown_grace_seconds,
            "PAYMENT_FREE_REQUESTS": self.payment.free_requests,
        }
        for name, value in non_negative.items():
            if value < 0:
                raise ValueError(f"{name} must not be negative, got {value}")

        if not 0 <= self.payment.fee_reserve_percent < 1:
            raise ValueError(
                "PAYMENT_FEE_RESERVE_PERCENT must be in [0, 1), "
                f"got {self.payment.fee_reserve_percent}"
            )

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> Settings:
        if dotenv:
            load_dotenv()

        payment = PaymentConfig(
            amount=int(os.getenv("PAYMENT_AMOUNT_SAT", "100")),
            free_requests=int(os.getenv("PAYMENT_FREE_REQUESTS", "1")),
            window_seconds=float(os.getenv("PAYMENT_WINDOW_SECONDS", "3600")),
            accepted_mints=_env_list("PAYMENT_MINT_URLS"),
            collection_mint=os.getenv("PAYMENT_COLLECTION_MINT", "").strip(),
            collection_access_key=os.getenv("PAYMENT_COLLECTION_ACCESS_KEY", "").strip(),
            fee_reserve_percent=float(os.getenv("PAYMENT_FEE_RESERVE_PERCENT", "0.05")),
        )

        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3003")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=_env_list("CORS_ORIGIN") or ["http://localhost:3000"],
            trust_proxy=_env_bool("TRUST_PROXY"),
            max_batches=int(os.getenv("MAX_BATCHES", "50")),
            max_batch_size=int(os.getenv("MAX_BATCH_SIZE", "100")),
            job_retention_seconds=float(os.getenv("JOB_RETENTION_SECONDS", "3600")),
            job_prune_interval_seconds=float(os.getenv("JOB_PRUNE_INTERVAL_SECONDS", "600")),
            shutdown_grace_seconds=float(os.getenv("SHUTDOWN_GRACE_SECONDS", "30")),
            mint_timeout=float(os.getenv("MINT_TIMEOUT", "30")),
            ippon_base=os.getenv("IPPON_BASE", "https://ippon.minibits.cash/v1"),
            ippon_timeout=float(os.getenv("IPPON_TIMEOUT", "30")),
            rate_limit_recovery_max=int(os.getenv("RATE_LIMIT_RECOVERY_MAX", "5")),
            rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
            payment=payment,
        )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
