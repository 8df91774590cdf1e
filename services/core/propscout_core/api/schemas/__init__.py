"""API schemas."""

from propscout_core.api.schemas.account import (
    AccountResponse,
    BillingInfo,
    CountersResponse,
    LedgerEntryResponse,
    PurchaseResponse,
    ReconciliationResponse,
)
from propscout_core.api.schemas.pipeline import (
    ConfirmFactsRequest,
    ConfirmStatsRequest,
    EvaluateRequest,
    ExtractRequest,
    ExtractResponse,
    OkResponse,
    StatsRequest,
    StatusResponse,
)
from propscout_core.api.schemas.preferences import (
    PreferencesEnvelope,
    PreferencesFields,
    PreferencesResponse,
    PreferencesUpdate,
)
from propscout_core.api.schemas.sessions import (
    EvaluationResponse,
    FactsResponse,
    SessionListResponse,
    SessionResponse,
    StatsConfirmedResponse,
    StatsRawResponse,
)

__all__ = [
    # Account schemas
    "AccountResponse",
    "BillingInfo",
    "CountersResponse",
    "LedgerEntryResponse",
    "PurchaseResponse",
    "ReconciliationResponse",
    # Pipeline schemas
    "ConfirmFactsRequest",
    "ConfirmStatsRequest",
    "EvaluateRequest",
    "ExtractRequest",
    "ExtractResponse",
    "OkResponse",
    "StatsRequest",
    "StatusResponse",
    # Preferences schemas
    "PreferencesEnvelope",
    "PreferencesFields",
    "PreferencesResponse",
    "PreferencesUpdate",
    # Session schemas
    "EvaluationResponse",
    "FactsResponse",
    "SessionListResponse",
    "SessionResponse",
    "StatsConfirmedResponse",
    "StatsRawResponse",
]
