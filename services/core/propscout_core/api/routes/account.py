"""Account and usage API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends

from propscout_core.api.deps import CurrentUserId, DBSession
from propscout_core.api.schemas.account import (
    AccountResponse,
    BillingInfo,
    CountersResponse,
    LedgerEntryResponse,
    PurchaseResponse,
    ReconciliationResponse,
)
from propscout_core.domain.services.quota import QuotaLedger

router = APIRouter(prefix="/account", tags=["account"])

LEDGER_PAGE_SIZE = 50
PURCHASES_PAGE_SIZE = 20


def get_quota_ledger(db: DBSession) -> QuotaLedger:
    """Get the quota ledger."""
    return QuotaLedger(db)


QuotaLedgerDep = Annotated[QuotaLedger, Depends(get_quota_ledger)]


@router.get("", response_model=AccountResponse)
async def get_account(
    user_id: CurrentUserId,
    quota: QuotaLedgerDep,
):
    """Usage counters, recent ledger rows and purchases for the caller."""
    counters = quota.get_counters(user_id)
    return AccountResponse(
        counters=CountersResponse.model_validate(counters),
        ledger=[
            LedgerEntryResponse.model_validate(e)
            for e in quota.list_ledger(user_id, limit=LEDGER_PAGE_SIZE)
        ],
        purchases=[
            PurchaseResponse.model_validate(p)
            for p in quota.list_purchases(user_id, limit=PURCHASES_PAGE_SIZE)
        ],
        billing=BillingInfo(),
        reconciliation=[
            ReconciliationResponse(**r.to_dict()) for r in quota.reconcile(user_id)
        ],
    )
