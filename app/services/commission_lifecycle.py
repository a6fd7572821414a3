import logging
from sqlalchemy.orm import Session
from app.models.commission import ResellerCommission, CommissionStatus
from app.models.subscription import SubscriptionStatus

logger = logging.getLogger(__name__)

# What a subscription status means for the reseller ledger.
# Every SubscriptionStatus must appear in exactly one set.
EARNING_STATUSES = frozenset({SubscriptionStatus.ACTIVE})
TERMINAL_FAILURE_STATUSES = frozenset({
    SubscriptionStatus.CANCELED,
    SubscriptionStatus.UNPAID,
    SubscriptionStatus.INCOMPLETE_EXPIRED,
})
NEUTRAL_STATUSES = frozenset({
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.INCOMPLETE,
    SubscriptionStatus.PAUSED,
})

LEDGER_ACTION_RECORD = "record"
LEDGER_ACTION_CANCEL = "cancel"
LEDGER_ACTION_NONE = "none"


def ledger_action_for(status: SubscriptionStatus) -> str:
    if status in EARNING_STATUSES:
        return LEDGER_ACTION_RECORD
    if status in TERMINAL_FAILURE_STATUSES:
        return LEDGER_ACTION_CANCEL
    if status in NEUTRAL_STATUSES:
        return LEDGER_ACTION_NONE
    raise ValueError(f"Unhandled subscription status: {status!r}")


def cancel_pending_commissions(db: Session, subscription_id: str) -> int:
    """
    Cancel every pending commission of a subscription. Returns rows changed.

    Single conditional UPDATE: paid commissions never match, and a second run
    finds nothing left to cancel.
    """
    cancelled = (
        db.query(ResellerCommission)
        .filter(
            ResellerCommission.subscription_id == subscription_id,
            ResellerCommission.status == CommissionStatus.PENDING,
        )
        .update({ResellerCommission.status: CommissionStatus.CANCELLED}, synchronize_session="fetch")
    )
    db.commit()
    if cancelled:
        logger.info("[Commission] Cancelled %d pending commissions for subscription %s", cancelled, subscription_id)
    return cancelled
