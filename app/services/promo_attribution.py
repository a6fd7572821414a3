from typing import Optional
from sqlalchemy.orm import Session
from app.models.promo_code import PromoCodeUsage


def latest_promo_usage(db: Session, customer_id: str) -> Optional[PromoCodeUsage]:
    """
    Most recent promo code usage for a Stripe customer, or None.

    A customer can redeem several codes over time; the subscription is always
    attributed to the newest one. Equal applied_at values fall back to the
    highest id, i.e. the later insert.
    """
    return (
        db.query(PromoCodeUsage)
        .filter(PromoCodeUsage.customer_id == customer_id)
        .order_by(PromoCodeUsage.applied_at.desc(), PromoCodeUsage.id.desc())
        .first()
    )
