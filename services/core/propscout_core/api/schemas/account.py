"""Account and usage schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class CountersResponse(BaseModel):
    """A user's (used, limit) pairs."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    extract_used: int
    extract_limit: int
    stats_used: int
    stats_limit: int
    evaluate_used: int
    evaluate_limit: int
    video_used: int
    video_limit: int
    created_at: datetime
    updated_at: datetime


class LedgerEntryResponse(BaseModel):
    """One usage ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    action_type: str
    delta: int
    reason: str
    direction: Optional[str] = None
    amount: Optional[int] = None
    note: Optional[str] = None
    related_purchase_id: Optional[int] = None
    related_session_id: Optional[str] = None
    created_at: datetime


class PurchaseResponse(BaseModel):
    """One credit purchase."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    extract_credits: int
    stats_credits: int
    evaluate_credits: int
    video_credits: int
    provider: Optional[str] = None
    provider_ref: Optional[str] = None
    amount_pence: Optional[int] = None
    currency: Optional[str] = None
    created_at: datetime


class BillingInfo(BaseModel):
    """Billing placeholder until a payment provider is wired in."""

    plan: str = "free"
    status: str = "active"
    next_renewal: Optional[datetime] = None
    portal_url: Optional[str] = None


class ReconciliationResponse(BaseModel):
    """Counter vs. ledger comparison for one action."""

    action: str
    used: int
    ledger_usage: int
    ledger_refunds: int
    drift: int
    balanced: bool


class AccountResponse(BaseModel):
    """Response body for the account view."""

    ok: bool = True
    counters: CountersResponse
    ledger: list[LedgerEntryResponse]
    purchases: list[PurchaseResponse]
    billing: BillingInfo
    reconciliation: list[ReconciliationResponse]
