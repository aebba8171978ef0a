"""Deal manager: lifecycle state machine, registries, scheduling and the caller API."""

from .interfaces import (
    DealRegistry,
    InclusionReceipt,
    LedgerClient,
    ProviderAck,
    ProviderDealStatus,
    ProviderStatus,
    ProviderTransport,
)
from .manager import DealManager, MonitorResult, VerificationResult
from .models import LIVE_STATES, TERMINAL_STATES, AuditEntry, Deal, DealState, can_transition
from .registry import InMemoryDealRegistry, PostgresDealRegistry
from .renewal import RenewalPlan, needs_renewal, renewal_plan, renewal_threshold
from .retry import RetryPolicy, call_with_retry
from .scheduler import DealScheduler
from .service import PreparedDataset, StorageService
from ..optimizer.models import DealParameters

__all__ = [
    "Deal",
    "DealState",
    "DealParameters",
    "AuditEntry",
    "LIVE_STATES",
    "TERMINAL_STATES",
    "can_transition",
    "DealManager",
    "MonitorResult",
    "VerificationResult",
    "DealScheduler",
    "StorageService",
    "PreparedDataset",
    "InMemoryDealRegistry",
    "PostgresDealRegistry",
    "RetryPolicy",
    "call_with_retry",
    "RenewalPlan",
    "renewal_plan",
    "renewal_threshold",
    "needs_renewal",
    "LedgerClient",
    "ProviderTransport",
    "DealRegistry",
    "InclusionReceipt",
    "ProviderAck",
    "ProviderStatus",
    "ProviderDealStatus",
]
