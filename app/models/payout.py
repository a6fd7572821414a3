from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, UniqueConstraint
from datetime import datetime
from app.db.base import Base


class ResellerPayout(Base):
    """
    One operator-initiated settlement of pending commissions.

    amount is what was actually paid out and may differ from the sum of the
    settled commissions (transfer fees, rounding agreed with the reseller).
    """

    __tablename__ = "reseller_payouts"

    id = Column(Integer, primary_key=True, index=True)
    reseller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String, nullable=False)
    commission_count = Column(Integer, nullable=False)
    commissions_total = Column(Integer, nullable=False)  # sum of settled commission amounts
    note = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ResellerClient(Base):
    __tablename__ = "reseller_clients"
    __table_args__ = (
        UniqueConstraint("reseller_id", "client_id", name="uq_reseller_clients_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    reseller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
