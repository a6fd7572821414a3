"""
Reseller commission ledger.

Writes at most one commission per (subscription_id, period_start). The sync
pass and the Stripe webhook both re-run this for the same subscription many
times per period, so "already recorded" is the normal outcome, not an error.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.billing_config import PricingConfig, get_pricing_config
from app.models.commission import ResellerCommission, CommissionStatus
from app.models.promo_code import ResellerPromoCode
from app.models.subscription import StripeSubscription, SubscriptionStatus

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal, str]

_HUNDRED = Decimal("100")


class CommissionError(Exception):
    """The ledger cannot record a commission for this subscription."""


@dataclass
class CommissionResult:
    commission: ResellerCommission
    created: bool


def _to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return Decimal("0")
    # str() first so floats like 0.1 keep their printed value
    return value if isinstance(value, Decimal) else Decimal(str(value))


def discounted_price(base_price: int, discount_percent: Optional[Number] = None) -> Decimal:
    """
    Plan price after the percent discount, in minor units (may be fractional).

    Amount-off codes have no percent and earn on the full plan price.
    """
    return Decimal(base_price) * (Decimal("1") - _to_decimal(discount_percent) / _HUNDRED)


def compute_commission_amount(
    base_price: int,
    commission_rate: Number,
    discount_percent: Optional[Number] = None,
) -> int:
    """
    Commission in minor units, rounded half up to a whole cent.

    39900 with a 20% discount at a 50% rate: 31920 * 0.5 = 15960.
    """
    paid = discounted_price(base_price, discount_percent)
    raw = paid * _to_decimal(commission_rate) / _HUNDRED
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def find_commission(db: Session, subscription_id: str, period_start: datetime) -> Optional[ResellerCommission]:
    return (
        db.query(ResellerCommission)
        .filter(
            ResellerCommission.subscription_id == subscription_id,
            ResellerCommission.period_start == period_start,
        )
        .first()
    )


def record_commission(
    db: Session,
    subscription: StripeSubscription,
    promo_code: ResellerPromoCode,
    pricing: Optional[PricingConfig] = None,
    paid_amount: Optional[int] = None,
) -> CommissionResult:
    """
    Insert the pending commission for the subscription's current period.

    paid_amount replaces the discounted plan price (manual entry of what the
    client actually paid). Commits on insert; returns the existing row
    untouched when the period is already in the ledger.
    """
    pricing = pricing or get_pricing_config()

    if subscription.current_period_start is None:
        raise CommissionError(f"Subscription {subscription.subscription_id} has no billing period")

    existing = find_commission(db, subscription.subscription_id, subscription.current_period_start)
    if existing:
        logger.info(
            "[Commission] Already recorded for subscription %s period %s (commission %s)",
            subscription.subscription_id, subscription.current_period_start, existing.id,
        )
        return CommissionResult(commission=existing, created=False)

    rate = promo_code.commission_rate if promo_code.commission_rate is not None else pricing.default_commission_rate
    if paid_amount is not None:
        price = paid_amount
        amount = compute_commission_amount(price, rate)
    else:
        price = pricing.base_price_for(subscription.price_id)
        amount = compute_commission_amount(price, rate, discount_percent=promo_code.discount_percent)

    commission = ResellerCommission(
        reseller_id=promo_code.reseller_id,
        user_id=subscription.user_id,
        subscription_id=subscription.subscription_id,
        promo_code_id=promo_code.id,
        commission_amount=amount,
        commission_rate=_to_decimal(rate),
        currency=pricing.currency,
        status=CommissionStatus.PENDING,
        period_start=subscription.current_period_start,
        period_end=subscription.current_period_end,
    )
    db.add(commission)
    try:
        db.commit()
    except IntegrityError:
        # Lost the race against a concurrent sync for the same period
        db.rollback()
        existing = find_commission(db, subscription.subscription_id, subscription.current_period_start)
        if existing is None:
            raise
        logger.info("[Commission] Concurrent insert won for subscription %s", subscription.subscription_id)
        return CommissionResult(commission=existing, created=False)

    db.refresh(commission)
    logger.info(
        "[Commission] Created commission %s for subscription %s: %d (%s%% of %d)",
        commission.id, subscription.subscription_id, amount, rate, price,
    )
    return CommissionResult(commission=commission, created=True)


def record_commission_for_subscription(
    db: Session,
    subscription: StripeSubscription,
    pricing: Optional[PricingConfig] = None,
    paid_amount: Optional[int] = None,
) -> Optional[CommissionResult]:
    """
    Ledger entry point for a mirrored subscription.

    Only active subscriptions attributed to a reseller promo code earn a
    commission; anything else returns None.
    """
    if subscription.status != SubscriptionStatus.ACTIVE or not subscription.promo_code_id:
        return None

    promo_code = db.query(ResellerPromoCode).filter(ResellerPromoCode.id == subscription.promo_code_id).first()
    if not promo_code:
        logger.warning(
            "[Commission] Promo code %s for subscription %s not found, no commission",
            subscription.promo_code_id, subscription.subscription_id,
        )
        return None

    return record_commission(db, subscription, promo_code, pricing=pricing, paid_amount=paid_amount)


def record_manual_commission(
    db: Session,
    subscription_id: str,
    payment_amount: int,
    pricing: Optional[PricingConfig] = None,
) -> CommissionResult:
    """
    Admin entry: commission for the current period of a mirrored subscription,
    computed from the amount the client actually paid instead of the plan price.
    """
    if isinstance(payment_amount, bool) or not isinstance(payment_amount, int) or payment_amount <= 0:
        raise CommissionError("invalid amount")

    subscription = (
        db.query(StripeSubscription)
        .filter(StripeSubscription.subscription_id == subscription_id)
        .first()
    )
    if not subscription:
        raise CommissionError(f"Subscription {subscription_id} not found")
    if subscription.status != SubscriptionStatus.ACTIVE:
        raise CommissionError(f"Subscription {subscription_id} is {subscription.status.value}, not active")
    if not subscription.promo_code_id:
        raise CommissionError(f"Subscription {subscription_id} was not sold through a reseller promo code")

    result = record_commission_for_subscription(db, subscription, pricing=pricing, paid_amount=payment_amount)
    if result is None:
        raise CommissionError(f"Promo code {subscription.promo_code_id} no longer exists")
    return result
