from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum as SQLEnum
from datetime import datetime
from enum import Enum
from app.db.base import Base


class SubscriptionStatus(str, Enum):
    """Stripe subscription statuses, as mirrored locally."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"


class StripeSubscription(Base):
    """
    Local mirror of a Stripe subscription.

    Rows are written by the sync pass and the Stripe webhook, one per
    subscription_id, and every write replaces all mutable fields.
    """

    __tablename__ = "stripe_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(String, unique=True, nullable=False, index=True)
    customer_id = Column(String, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    price_id = Column(String, nullable=True)
    current_period_start = Column(DateTime, nullable=True)  # UTC
    current_period_end = Column(DateTime, nullable=True)  # UTC
    status = Column(
        SQLEnum(SubscriptionStatus, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    payment_method_brand = Column(String, nullable=True)
    payment_method_last4 = Column(String, nullable=True)
    # Promo attribution, recomputed on every sync
    promo_code_id = Column(Integer, ForeignKey("reseller_promo_codes.id", ondelete="SET NULL"), nullable=True)
    discount_amount = Column(Integer, nullable=True)  # minor units
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
