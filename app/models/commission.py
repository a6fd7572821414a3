from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, UniqueConstraint, Enum as SQLEnum
from datetime import datetime
from enum import Enum
from app.db.base import Base


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


# pending is the only state that moves; paid and cancelled are final.
COMMISSION_TRANSITIONS = {
    CommissionStatus.PENDING: frozenset({CommissionStatus.PAID, CommissionStatus.CANCELLED}),
    CommissionStatus.PAID: frozenset(),
    CommissionStatus.CANCELLED: frozenset(),
}


class IllegalCommissionTransition(ValueError):
    pass


def ensure_transition(current: CommissionStatus, target: CommissionStatus) -> None:
    if target not in COMMISSION_TRANSITIONS[current]:
        raise IllegalCommissionTransition(
            f"Commission cannot move from '{current.value}' to '{target.value}'"
        )


class ResellerCommission(Base):
    """
    Ledger entry: money owed to a reseller for one subscription billing period.

    (subscription_id, period_start) is the idempotency key of the ledger.
    """

    __tablename__ = "reseller_commissions"
    __table_args__ = (
        UniqueConstraint("subscription_id", "period_start", name="uq_reseller_commissions_subscription_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    reseller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)  # the paying client
    subscription_id = Column(String, nullable=False, index=True)
    promo_code_id = Column(Integer, ForeignKey("reseller_promo_codes.id", ondelete="SET NULL"), nullable=True)
    commission_amount = Column(Integer, nullable=False)  # minor units
    commission_rate = Column(Numeric(5, 2), nullable=False)  # percent
    currency = Column(String, nullable=False)
    status = Column(
        SQLEnum(CommissionStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=CommissionStatus.PENDING,
        index=True,
    )
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=True)
    payout_id = Column(Integer, ForeignKey("reseller_payouts.id", ondelete="RESTRICT"), nullable=True, index=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return (
            f"<ResellerCommission(id={self.id}, subscription_id={self.subscription_id}, "
            f"period_start={self.period_start}, status={self.status}, amount={self.commission_amount})>"
        )
