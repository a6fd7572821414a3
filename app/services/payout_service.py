"""
Reseller payouts: settle a batch of pending commissions in one transaction.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.commission import (
    CommissionStatus,
    IllegalCommissionTransition,
    ResellerCommission,
    ensure_transition,
)
from app.models.payout import ResellerPayout

logger = logging.getLogger(__name__)


class PayoutValidationError(Exception):
    """The payout request is rejected; nothing was changed."""


def _validate_selection(
    commissions: List[ResellerCommission],
    requested_ids: List[int],
    reseller_id: int,
) -> str:
    """Check the locked rows against the request. Returns the batch currency."""
    found_ids = {c.id for c in commissions}
    missing = [cid for cid in requested_ids if cid not in found_ids]
    if missing:
        raise PayoutValidationError(f"commissions not found: {', '.join(str(m) for m in missing)}")

    for commission in commissions:
        if commission.reseller_id != reseller_id:
            raise PayoutValidationError(
                f"commission {commission.id} does not belong to reseller {reseller_id}"
            )
        try:
            ensure_transition(commission.status, CommissionStatus.PAID)
        except IllegalCommissionTransition:
            raise PayoutValidationError(
                f"commission {commission.id} is {commission.status.value}, only pending commissions can be paid out"
            )

    currencies = {c.currency for c in commissions}
    if len(currencies) != 1:
        raise PayoutValidationError("selected commissions use different currencies")
    return currencies.pop()


def process_payout(
    db: Session,
    reseller_id: int,
    commission_ids: Iterable[int],
    payout_amount: int,
    note: Optional[str] = None,
    created_by: Optional[int] = None,
) -> ResellerPayout:
    """
    Mark the selected commissions paid and record the payout.

    All or nothing: any invalid selection raises PayoutValidationError before
    a row changes, and the update itself runs in a single transaction that
    re-checks every row is still pending.
    """
    requested_ids = sorted(set(commission_ids))
    if not requested_ids:
        raise PayoutValidationError("no commissions selected")
    if isinstance(payout_amount, bool) or not isinstance(payout_amount, int) or payout_amount <= 0:
        raise PayoutValidationError("invalid amount")

    try:
        # Row locks on Postgres; SQLite ignores FOR UPDATE
        commissions = (
            db.query(ResellerCommission)
            .filter(ResellerCommission.id.in_(requested_ids))
            .order_by(ResellerCommission.id)
            .with_for_update()
            .all()
        )
        currency = _validate_selection(commissions, requested_ids, reseller_id)

        payout = ResellerPayout(
            reseller_id=reseller_id,
            amount=payout_amount,
            currency=currency,
            commission_count=len(commissions),
            commissions_total=sum(c.commission_amount for c in commissions),
            note=note,
            created_by=created_by,
        )
        db.add(payout)
        db.flush()

        paid_at = datetime.utcnow()
        updated = (
            db.query(ResellerCommission)
            .filter(
                ResellerCommission.id.in_(requested_ids),
                ResellerCommission.reseller_id == reseller_id,
                ResellerCommission.status == CommissionStatus.PENDING,
            )
            .update(
                {
                    ResellerCommission.status: CommissionStatus.PAID,
                    ResellerCommission.payout_id: payout.id,
                    ResellerCommission.paid_at: paid_at,
                },
                synchronize_session="fetch",
            )
        )
        if updated != len(requested_ids):
            # Another payout or a cancellation got to some rows first
            raise PayoutValidationError("selected commissions changed during payout, nothing was paid")

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payout)
    logger.info(
        "[Payout] Reseller %s paid %d %s for %d commissions (ledger total %d), payout %s",
        reseller_id, payout_amount, currency, payout.commission_count, payout.commissions_total, payout.id,
    )
    return payout


def list_payouts(db: Session, reseller_id: int) -> List[ResellerPayout]:
    return (
        db.query(ResellerPayout)
        .filter(ResellerPayout.reseller_id == reseller_id)
        .order_by(ResellerPayout.created_at.desc(), ResellerPayout.id.desc())
        .all()
    )
