from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from app.models.commission import ResellerCommission, CommissionStatus
from app.models.payout import ResellerPayout


def list_commissions(
    db: Session,
    reseller_id: int,
    status: Optional[CommissionStatus] = None,
) -> List[ResellerCommission]:
    query = db.query(ResellerCommission).filter(ResellerCommission.reseller_id == reseller_id)
    if status is not None:
        query = query.filter(ResellerCommission.status == status)
    return query.order_by(ResellerCommission.period_start.desc(), ResellerCommission.id.desc()).all()


def earnings_summary(db: Session, reseller_id: int) -> dict:
    """Commission totals per status plus what was actually paid out, in minor units."""
    rows = (
        db.query(ResellerCommission.status, func.coalesce(func.sum(ResellerCommission.commission_amount), 0))
        .filter(ResellerCommission.reseller_id == reseller_id)
        .group_by(ResellerCommission.status)
        .all()
    )
    by_status = {status: int(total) for status, total in rows}

    paid_out = (
        db.query(func.coalesce(func.sum(ResellerPayout.amount), 0))
        .filter(ResellerPayout.reseller_id == reseller_id)
        .scalar()
    )

    pending = by_status.get(CommissionStatus.PENDING, 0)
    paid = by_status.get(CommissionStatus.PAID, 0)
    return {
        "reseller_id": reseller_id,
        "total_commissions": pending + paid,
        "pending_commissions": pending,
        "paid_commissions": paid,
        "cancelled_commissions": by_status.get(CommissionStatus.CANCELLED, 0),
        "paid_out": int(paid_out or 0),
    }
