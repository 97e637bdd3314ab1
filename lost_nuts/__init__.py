"""Lost Nuts - Cashu ecash recovery service.

Recovers proofs from seed-derived blinded outputs via the mint restore
protocol and parks them in a custodial settlement wallet.
"""

from .api import create_app
from .config import Settings
from .jobs import JobOrchestrator, JobStore
from .mint import Mint
from .payment import PaymentCollector, PaymentConfig, PaymentGate
from .scanner import GapLimitScanner, ScanResult

__all__ = [
    # Service
    "create_app",
    "Settings",
    # Recovery
    "GapLimitScanner",
    "ScanResult",
    "JobOrchestrator",
    "JobStore",
    "Mint",
    # Payments
    "PaymentConfig",
    "PaymentGate",
    "PaymentCollector",
]
