"""Click/call reconciliation for website call tracking."""

from calltrack.errors import (
    CallTrackingError,
    ConflictError,
    NotFoundError,
    PublishError,
    UpstreamUnavailable,
    ValidationError,
)
from calltrack.leads import LeadConfig, LeadPublisher, PublishResult
from calltrack.matching import MatchWindow, call_qualifies, select_call
from calltrack.pbx import (
    PBXConfig,
    PBXLogFetcher,
    StaticKeyAuth,
    TokenExchangeAuth,
)
from calltrack.reconciler import PassResult, ReconciliationEngine
from calltrack.scheduler import ReconciliationScheduler
from calltrack.schemas import CallRecord, ClickEvent, LeadRecord, normalize_phone
from calltrack.store import ClickStore, InMemoryClickStore

__all__ = [
    "CallRecord",
    "CallTrackingError",
    "ClickEvent",
    "ClickStore",
    "ConflictError",
    "InMemoryClickStore",
    "LeadConfig",
    "LeadPublisher",
    "LeadRecord",
    "MatchWindow",
    "NotFoundError",
    "PBXConfig",
    "PBXLogFetcher",
    "PassResult",
    "PublishError",
    "PublishResult",
    "ReconciliationEngine",
    "ReconciliationScheduler",
    "StaticKeyAuth",
    "TokenExchangeAuth",
    "UpstreamUnavailable",
    "ValidationError",
    "call_qualifies",
    "normalize_phone",
    "select_call",
]
