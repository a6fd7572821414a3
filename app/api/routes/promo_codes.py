from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.auth import require_admin
from app.models.user import User
from app.schemas.billing import CommissionRateUpdate, PromoCodeCreate, PromoCodeResponse
from app.services.billing_client import BillingClient, get_billing_client
from app.services.promo_code_service import (
    PromoCodeError,
    create_reseller_promo_code,
    deactivate_promo_code,
    list_promo_codes,
    update_commission_rate,
)

router = APIRouter()


@router.get("/promo-codes", response_model=List[PromoCodeResponse])
async def get_promo_codes(
    reseller_id: int | None = Query(None),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return list_promo_codes(db, reseller_id=reseller_id)


@router.post("/promo-codes", response_model=PromoCodeResponse)
async def create_promo_code(
    body: PromoCodeCreate,
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
    admin: User = Depends(require_admin),
):
    try:
        return create_reseller_promo_code(
            db,
            billing,
            reseller_id=body.reseller_id,
            promo_code_text=body.promo_code,
            coupon_id=body.coupon_id,
            discount_percent=body.discount_percent,
            discount_amount=body.discount_amount,
            currency=body.currency,
            commission_rate=body.commission_rate,
        )
    except PromoCodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.patch("/promo-codes/{promo_code_id}/commission-rate", response_model=PromoCodeResponse)
async def set_commission_rate(
    promo_code_id: int,
    body: CommissionRateUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        return update_commission_rate(db, promo_code_id, body.commission_rate)
    except PromoCodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/promo-codes/{promo_code_id}/deactivate", response_model=PromoCodeResponse)
async def deactivate(
    promo_code_id: int,
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
    admin: User = Depends(require_admin),
):
    try:
        return deactivate_promo_code(db, billing, promo_code_id)
    except PromoCodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
