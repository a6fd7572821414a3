from pydantic import BaseModel, Field
from typing import List
from datetime import datetime
from decimal import Decimal
from app.models.commission import CommissionStatus


class PayoutRequest(BaseModel):
    selected_commission_ids: List[int]
    payout_amount_minor_units: int
    note: str | None = None


class ManualCommissionRequest(BaseModel):
    subscription_id: str
    payment_amount_minor_units: int


class PromoCodeCreate(BaseModel):
    reseller_id: int
    promo_code: str | None = None  # Defaults to RESELLER + first 8 chars of the reseller id
    coupon_id: str | None = None  # Reuse an existing Stripe coupon instead of creating one
    discount_percent: Decimal | None = None
    discount_amount: int | None = None  # minor units
    currency: str | None = None
    commission_rate: Decimal | None = None


class CommissionRateUpdate(BaseModel):
    commission_rate: Decimal = Field(..., ge=0, le=100)


class SyncErrorDetail(BaseModel):
    subscription_id: str
    customer_id: str
    error_message: str


class SyncSummaryResponse(BaseModel):
    synced_count: int
    error_count: int
    commissions_created: int
    commissions_cancelled: int
    error_details: List[SyncErrorDetail]


class CommissionResponse(BaseModel):
    id: int
    reseller_id: int
    user_id: int
    subscription_id: str
    promo_code_id: int | None = None
    commission_amount: int
    commission_rate: Decimal
    currency: str
    status: CommissionStatus
    period_start: datetime
    period_end: datetime | None = None
    payout_id: int | None = None
    paid_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ManualCommissionResponse(BaseModel):
    created: bool
    commission: CommissionResponse


class PayoutResponse(BaseModel):
    id: int
    reseller_id: int
    amount: int
    currency: str
    commission_count: int
    commissions_total: int
    note: str | None = None
    created_by: int | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class EarningsResponse(BaseModel):
    reseller_id: int
    total_commissions: int
    pending_commissions: int
    paid_commissions: int
    cancelled_commissions: int
    paid_out: int


class PromoCodeResponse(BaseModel):
    id: int
    reseller_id: int
    promo_code_stripe_id: str
    promo_code_text: str
    coupon_id: str
    commission_rate: Decimal
    discount_percent: Decimal | None = None
    discount_amount: int | None = None
    currency: str | None = None
    is_active: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True
