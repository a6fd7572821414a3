from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Numeric, CheckConstraint, UniqueConstraint
from datetime import datetime
from app.db.base import Base


class ResellerPromoCode(Base):
    """
    A Stripe promotion code owned by a reseller.

    Exactly one of discount_percent / discount_amount is set. Once a
    commission references the code, only is_active and commission_rate change.
    """

    __tablename__ = "reseller_promo_codes"
    __table_args__ = (
        CheckConstraint(
            "(discount_percent IS NULL) <> (discount_amount IS NULL)",
            name="ck_reseller_promo_codes_one_discount",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    reseller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    promo_code_stripe_id = Column(String, unique=True, nullable=False, index=True)
    promo_code_text = Column(String, nullable=False)
    coupon_id = Column(String, nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False, default=50)  # percent
    discount_percent = Column(Numeric(5, 2), nullable=True)
    discount_amount = Column(Integer, nullable=True)  # minor units
    currency = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PromoCodeUsage(Base):
    """Append-only record of a customer applying a promotion code at checkout."""

    __tablename__ = "promo_code_usage"
    __table_args__ = (
        UniqueConstraint("checkout_session_id", "promo_code_stripe_id", name="uq_promo_code_usage_session_code"),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(String, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    # Null when the Stripe promotion code is not a reseller code
    promo_code_id = Column(Integer, ForeignKey("reseller_promo_codes.id", ondelete="SET NULL"), nullable=True)
    promo_code_stripe_id = Column(String, nullable=True)
    checkout_session_id = Column(String, nullable=True)
    discount_amount = Column(Integer, nullable=True)  # minor units
    currency = Column(String, nullable=True)
    applied_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
