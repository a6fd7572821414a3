"""
Stripe webhook event handling.

Stripe retries deliveries, so every step here is safe to repeat: promo code
usages are keyed by (checkout session, promotion code), the reseller link is
only set when empty, and subscription state goes through the same idempotent
reconciliation as the sync pass.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.billing_config import PricingConfig
from app.models.payout import ResellerClient
from app.models.promo_code import PromoCodeUsage, ResellerPromoCode
from app.models.stripe_customer import StripeCustomer
from app.models.user import User
from app.services.billing_client import BillingClient
from app.services.subscription_sync import sync_all_subscriptions

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENT_PREFIXES = ("customer.subscription.", "invoice.")


def _stripe_id(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value if isinstance(value, str) else None


def link_client_to_reseller(db: Session, user_id: int, promo_code: ResellerPromoCode) -> None:
    """First reseller code wins: later codes never move a client to another reseller."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return
    if user.promo_code_id is None:
        user.promo_code_id = promo_code.id
        user.reseller_id = promo_code.reseller_id
        user.source = "reseller"
    if user.reseller_id != promo_code.reseller_id:
        logger.info("[Stripe webhook] User %s already belongs to reseller %s", user_id, user.reseller_id)
        return

    existing_link = (
        db.query(ResellerClient)
        .filter(ResellerClient.reseller_id == promo_code.reseller_id, ResellerClient.client_id == user_id)
        .first()
    )
    if not existing_link:
        db.add(ResellerClient(reseller_id=promo_code.reseller_id, client_id=user_id))


def capture_promo_code_usage(db: Session, billing: BillingClient, session_id: str, customer_id: str) -> int:
    """Record the promotion codes applied in a checkout session. Returns new usage rows."""
    session = billing.retrieve_checkout_session(session_id)
    breakdown = (session.get("total_details") or {}).get("breakdown") or {}
    discounts = breakdown.get("discounts") or []
    if not discounts:
        logger.info("[Stripe webhook] No discounts applied to session %s", session_id)
        return 0

    customer = db.query(StripeCustomer).filter(StripeCustomer.customer_id == customer_id).first()
    if not customer:
        logger.error("[Stripe webhook] No user for customer %s, promo usage of session %s not recorded", customer_id, session_id)
        return 0

    recorded = 0
    for discount in discounts:
        promotion_code_id = _stripe_id((discount.get("discount") or {}).get("promotion_code"))
        if not promotion_code_id:
            logger.info("[Stripe webhook] Discount without promotion code in session %s", session_id)
            continue

        already_recorded = (
            db.query(PromoCodeUsage)
            .filter(
                PromoCodeUsage.checkout_session_id == session_id,
                PromoCodeUsage.promo_code_stripe_id == promotion_code_id,
            )
            .first()
        )
        if already_recorded:
            logger.info("[Stripe webhook] Promo usage %s/%s already recorded", session_id, promotion_code_id)
            continue

        promo_code = (
            db.query(ResellerPromoCode)
            .filter(ResellerPromoCode.promo_code_stripe_id == promotion_code_id)
            .first()
        )
        db.add(PromoCodeUsage(
            checkout_session_id=session_id,
            customer_id=customer_id,
            user_id=customer.user_id,
            promo_code_id=promo_code.id if promo_code else None,
            promo_code_stripe_id=promotion_code_id,
            discount_amount=discount.get("amount"),
            currency=session.get("currency") or "eur",
        ))
        if promo_code:
            link_client_to_reseller(db, customer.user_id, promo_code)
        db.commit()
        recorded += 1
        logger.info("[Stripe webhook] Promo code usage recorded for session %s (%s)", session_id, promotion_code_id)

    return recorded


def handle_stripe_event(
    db: Session,
    billing: BillingClient,
    event: Dict[str, Any],
    pricing: Optional[PricingConfig] = None,
) -> Dict[str, Any]:
    """Apply one verified Stripe event. Returns a small report for logging/tests."""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    report: Dict[str, Any] = {"type": event_type, "handled": False}

    if "customer" not in obj:
        return report

    # One-time payments are handled via checkout.session.completed only
    if event_type == "payment_intent.succeeded" and obj.get("invoice") is None:
        return report

    customer_id = _stripe_id(obj.get("customer"))
    if not customer_id:
        logger.error("[Stripe webhook] No customer on event %s (%s)", event.get("id"), event_type)
        return report

    sync_subscriptions = event_type.startswith(SUBSCRIPTION_EVENT_PREFIXES)
    if event_type == "checkout.session.completed":
        sync_subscriptions = obj.get("mode") == "subscription"
        report["promo_usages_recorded"] = capture_promo_code_usage(db, billing, obj["id"], customer_id)

    if sync_subscriptions:
        logger.info("[Stripe webhook] Syncing subscriptions for customer %s", customer_id)
        summary = sync_all_subscriptions(db, billing, pricing=pricing, customer_id=customer_id)
        report["sync"] = summary.to_dict()

    report["handled"] = True
    return report
