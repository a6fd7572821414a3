"""
Admin endpoints for the reseller commission pipeline: sync trigger, payouts,
manual commissions and per-reseller reports.
"""
import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.auth import require_admin
from app.models.commission import CommissionStatus
from app.models.user import User, UserRole
from app.schemas.billing import (
    CommissionResponse,
    EarningsResponse,
    ManualCommissionRequest,
    ManualCommissionResponse,
    PayoutRequest,
    PayoutResponse,
    SyncSummaryResponse,
)
from app.services.billing_client import BillingClient, get_billing_client
from app.services.commission_ledger import CommissionError, record_manual_commission
from app.services.payout_service import PayoutValidationError, list_payouts, process_payout
from app.services.reseller_reports import earnings_summary, list_commissions
from app.services.subscription_sync import (
    BillingUnavailableError,
    SyncAlreadyRunningError,
    run_sync_pass,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_reseller(db: Session, reseller_id: int) -> User:
    reseller = db.query(User).filter(User.id == reseller_id).first()
    if not reseller or reseller.role != UserRole.RESELLER:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reseller not found")
    return reseller


@router.post("/sync-subscriptions", response_model=SyncSummaryResponse)
def sync_subscriptions(
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
    admin: User = Depends(require_admin),
):
    """Run one full Stripe -> mirror -> ledger pass. Blocking, so a plain def (threadpool)."""
    logger.info("[Sync] Triggered by admin %s", admin.id)
    try:
        summary = run_sync_pass(db, billing)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except BillingUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return summary.to_dict()


@router.post("/resellers/{reseller_id}/payouts", response_model=PayoutResponse)
async def create_payout(
    reseller_id: int,
    body: PayoutRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        payout = process_payout(
            db,
            reseller_id=reseller_id,
            commission_ids=body.selected_commission_ids,
            payout_amount=body.payout_amount_minor_units,
            note=body.note,
            created_by=admin.id,
        )
    except PayoutValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return payout


@router.get("/resellers/{reseller_id}/payouts", response_model=List[PayoutResponse])
async def get_payouts(
    reseller_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    _get_reseller(db, reseller_id)
    return list_payouts(db, reseller_id)


@router.get("/resellers/{reseller_id}/commissions", response_model=List[CommissionResponse])
async def get_commissions(
    reseller_id: int,
    status_filter: CommissionStatus | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    _get_reseller(db, reseller_id)
    return list_commissions(db, reseller_id, status=status_filter)


@router.get("/resellers/{reseller_id}/earnings", response_model=EarningsResponse)
async def get_earnings(
    reseller_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    _get_reseller(db, reseller_id)
    return earnings_summary(db, reseller_id)


@router.post("/commissions", response_model=ManualCommissionResponse)
async def create_manual_commission(
    body: ManualCommissionRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        result = record_manual_commission(db, body.subscription_id, body.payment_amount_minor_units)
    except CommissionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info(
        "[Commission] Manual entry by admin %s for subscription %s (created=%s)",
        admin.id, body.subscription_id, result.created,
    )
    return {"created": result.created, "commission": result.commission}
