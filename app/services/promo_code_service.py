"""
Reseller promo codes: a Stripe coupon + promotion code pair, mirrored locally
with the reseller's commission rate.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import stripe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.billing_config import DEFAULT_COMMISSION_RATE
from app.models.promo_code import ResellerPromoCode
from app.models.user import User, UserRole
from app.services.billing_client import BillingClient

logger = logging.getLogger(__name__)

COUPON_DURATION_MONTHS = 12


class PromoCodeError(Exception):
    pass


def _validate_rate(rate) -> Decimal:
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError):
        raise PromoCodeError("commission_rate must be a number")
    if value < 0 or value > 100:
        raise PromoCodeError("commission_rate must be between 0 and 100")
    return value


def default_promo_code_text(reseller: User) -> str:
    return f"RESELLER{str(reseller.supabase_id or reseller.id)[:8].upper()}"


def create_reseller_promo_code(
    db: Session,
    billing: BillingClient,
    reseller_id: int,
    promo_code_text: Optional[str] = None,
    coupon_id: Optional[str] = None,
    discount_percent: Optional[Decimal] = None,
    discount_amount: Optional[int] = None,
    currency: Optional[str] = None,
    commission_rate: Optional[Decimal] = None,
) -> ResellerPromoCode:
    """
    Create the Stripe coupon (unless an existing coupon_id is given) and
    promotion code for a reseller, then store it.

    discount_amount is in minor units. Exactly one of discount_percent and
    discount_amount (with currency) must describe a new coupon.
    """
    reseller = db.query(User).filter(User.id == reseller_id).first()
    if not reseller:
        raise PromoCodeError("Reseller not found")
    if reseller.role != UserRole.RESELLER:
        raise PromoCodeError("User is not a reseller")

    rate = _validate_rate(commission_rate if commission_rate is not None else DEFAULT_COMMISSION_RATE)

    if not coupon_id:
        if discount_percent and discount_amount:
            raise PromoCodeError("Provide either discount_percent or discount_amount, not both")
        if discount_percent:
            if not (0 < Decimal(str(discount_percent)) <= 100):
                raise PromoCodeError("discount_percent must be between 0 and 100")
        elif not (discount_amount and currency):
            raise PromoCodeError("Either discount_percent or (discount_amount and currency) must be provided")

    try:
        if coupon_id:
            coupon = billing.retrieve_coupon(coupon_id)
        else:
            coupon_params = {
                "duration": "repeating",
                "duration_in_months": COUPON_DURATION_MONTHS,
                "name": reseller.email,
            }
            if discount_percent:
                coupon_params["percent_off"] = float(discount_percent)
            else:
                coupon_params["amount_off"] = int(discount_amount)
                coupon_params["currency"] = currency.lower()
            coupon = billing.create_coupon(**coupon_params)

        promotion_code = billing.create_promotion_code(
            code=promo_code_text or default_promo_code_text(reseller),
            coupon=coupon["id"],
            metadata={
                "reseller_id": str(reseller.id),
                "reseller_name": reseller.full_name or "",
                "reseller_email": reseller.email,
            },
        )
    except stripe.StripeError as e:
        logger.error("[Promo codes] Stripe error creating promo code for reseller %s: %s", reseller_id, e)
        raise PromoCodeError(f"Stripe error: {e}")

    logger.info("[Promo codes] Created Stripe promotion code %s (%s)", promotion_code["id"], promotion_code.get("code"))

    percent_off = coupon.get("percent_off")
    amount_off = coupon.get("amount_off")
    promo_code = ResellerPromoCode(
        reseller_id=reseller.id,
        promo_code_stripe_id=promotion_code["id"],
        promo_code_text=promotion_code.get("code") or promo_code_text,
        coupon_id=coupon["id"],
        commission_rate=rate,
        discount_percent=Decimal(str(percent_off)) if percent_off else None,
        discount_amount=int(amount_off) if amount_off and not percent_off else None,
        currency=coupon.get("currency"),
        is_active=bool(promotion_code.get("active", True)),
    )
    try:
        db.add(promo_code)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[Promo codes] Error storing promo code %s: %s", promotion_code["id"], e)
        # Keep Stripe consistent with the database: an unstored code must not be redeemable
        try:
            billing.update_promotion_code(promotion_code["id"], active=False)
        except stripe.StripeError as cleanup_error:
            logger.error("[Promo codes] Failed to deactivate Stripe promotion code %s: %s", promotion_code["id"], cleanup_error)
        raise PromoCodeError("Failed to store promo code in database")

    db.refresh(promo_code)
    return promo_code


def update_commission_rate(db: Session, promo_code_id: int, commission_rate) -> ResellerPromoCode:
    """New rate applies to commissions recorded from now on; existing rows keep theirs."""
    promo_code = db.query(ResellerPromoCode).filter(ResellerPromoCode.id == promo_code_id).first()
    if not promo_code:
        raise PromoCodeError("Promo code not found")
    promo_code.commission_rate = _validate_rate(commission_rate)
    db.commit()
    db.refresh(promo_code)
    logger.info("[Promo codes] Commission rate of promo code %s set to %s%%", promo_code_id, promo_code.commission_rate)
    return promo_code


def deactivate_promo_code(db: Session, billing: BillingClient, promo_code_id: int) -> ResellerPromoCode:
    promo_code = db.query(ResellerPromoCode).filter(ResellerPromoCode.id == promo_code_id).first()
    if not promo_code:
        raise PromoCodeError("Promo code not found")
    if not promo_code.is_active:
        return promo_code

    try:
        billing.update_promotion_code(promo_code.promo_code_stripe_id, active=False)
    except stripe.StripeError as e:
        raise PromoCodeError(f"Stripe error: {e}")

    promo_code.is_active = False
    db.commit()
    db.refresh(promo_code)
    logger.info("[Promo codes] Deactivated promo code %s", promo_code_id)
    return promo_code


def list_promo_codes(db: Session, reseller_id: Optional[int] = None):
    query = db.query(ResellerPromoCode)
    if reseller_id is not None:
        query = query.filter(ResellerPromoCode.reseller_id == reseller_id)
    return query.order_by(ResellerPromoCode.created_at.desc(), ResellerPromoCode.id.desc()).all()
