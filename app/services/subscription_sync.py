"""
Sync Stripe subscriptions into the local mirror and reconcile the reseller
commission ledger.

One pass walks every subscription in Stripe, page by page. Per subscription:
resolve the platform user, resolve promo attribution, upsert the mirror row,
then record a commission (active + attributed) or cancel pending ones
(terminal failure). Problems with a single subscription land in the summary's
error list and the pass moves on; only failures talking to Stripe itself
abort it.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import stripe
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.billing_config import PricingConfig, SYNC_PAGE_SIZE, get_pricing_config
from app.db.session import is_postgres
from app.models.stripe_customer import StripeCustomer
from app.models.subscription import StripeSubscription, SubscriptionStatus
from app.services.billing_client import BillingClient, BillingSubscription
from app.services.commission_ledger import record_commission_for_subscription
from app.services.commission_lifecycle import (
    LEDGER_ACTION_CANCEL,
    LEDGER_ACTION_RECORD,
    cancel_pending_commissions,
    ledger_action_for,
)
from app.services.promo_attribution import latest_promo_usage

logger = logging.getLogger(__name__)

# Arbitrary but fixed key for pg_try_advisory_lock
SYNC_ADVISORY_LOCK_KEY = 72_310_001

_local_sync_lock = threading.Lock()


class BillingUnavailableError(Exception):
    """Stripe could not be reached or rejected our credentials."""


class SyncAlreadyRunningError(Exception):
    pass


class SyncRecordError(Exception):
    """A single subscription could not be mirrored."""


@dataclass
class SyncError:
    subscription_id: str
    customer_id: str
    error_message: str

    def to_dict(self) -> dict:
        return {
            "subscription_id": self.subscription_id,
            "customer_id": self.customer_id,
            "error_message": self.error_message,
        }


@dataclass
class SyncSummary:
    synced_count: int = 0
    commissions_created: int = 0
    commissions_cancelled: int = 0
    error_details: List[SyncError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.error_details)

    def add_error(self, subscription_id: str, customer_id: Optional[str], message: str) -> None:
        self.error_details.append(SyncError(subscription_id, customer_id or "N/A", message))

    def to_dict(self) -> dict:
        return {
            "synced_count": self.synced_count,
            "error_count": self.error_count,
            "commissions_created": self.commissions_created,
            "commissions_cancelled": self.commissions_cancelled,
            "error_details": [e.to_dict() for e in self.error_details],
        }


@contextmanager
def sync_lock(db: Session):
    """
    Single-flight guard for the sync pass.

    Postgres: session-level advisory lock, so two app instances (or the API
    and the cron script) never run a pass at the same time. The lock lives on
    its own connection because the ORM session hands its connection back to
    the pool on every commit. Elsewhere an in-process lock.
    """
    bind = db.get_bind()
    if is_postgres(bind):
        with bind.connect() as lock_conn:
            acquired = lock_conn.execute(
                text("SELECT pg_try_advisory_lock(:key)"), {"key": SYNC_ADVISORY_LOCK_KEY}
            ).scalar()
            lock_conn.commit()
            if not acquired:
                raise SyncAlreadyRunningError("A subscription sync is already running")
            try:
                yield
            finally:
                lock_conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": SYNC_ADVISORY_LOCK_KEY})
                lock_conn.commit()
    else:
        if not _local_sync_lock.acquire(blocking=False):
            raise SyncAlreadyRunningError("A subscription sync is already running")
        try:
            yield
        finally:
            _local_sync_lock.release()


def upsert_subscription(
    db: Session,
    record: BillingSubscription,
    user_id: int,
    status: SubscriptionStatus,
) -> StripeSubscription:
    """
    Write the mirror row for one Stripe subscription (flush, no commit).

    Replace semantics: every mutable field comes from this pass, promo
    attribution included, so a newer promo code usage re-attributes.
    """
    usage = latest_promo_usage(db, record.customer_id)

    row = (
        db.query(StripeSubscription)
        .filter(StripeSubscription.subscription_id == record.subscription_id)
        .first()
    )
    if row is None:
        row = StripeSubscription(
            subscription_id=record.subscription_id,
            created_at=record.created or datetime.utcnow(),
        )
        db.add(row)

    row.customer_id = record.customer_id
    row.user_id = user_id
    row.price_id = record.price_id
    row.current_period_start = record.current_period_start
    row.current_period_end = record.current_period_end
    row.status = status
    row.cancel_at_period_end = record.cancel_at_period_end
    row.payment_method_brand = record.payment_method_brand
    row.payment_method_last4 = record.payment_method_last4
    row.promo_code_id = usage.promo_code_id if usage else None
    row.discount_amount = usage.discount_amount if usage else None
    row.updated_at = datetime.utcnow()

    db.flush()
    return row


def reconcile_subscription(
    db: Session,
    record: BillingSubscription,
    summary: SyncSummary,
    pricing: Optional[PricingConfig] = None,
) -> Optional[StripeSubscription]:
    """
    Mirror one subscription and apply its ledger consequence.

    Never raises for per-record problems: they are rolled back and added to
    summary.error_details. Returns the mirror row when the upsert committed.
    """
    customer_id = record.customer_id
    try:
        if not customer_id:
            raise SyncRecordError("No customer ID found")

        customer = db.query(StripeCustomer).filter(StripeCustomer.customer_id == customer_id).first()
        if not customer:
            raise SyncRecordError("No user found in stripe_customers table")

        try:
            status = SubscriptionStatus(record.status)
        except ValueError:
            raise SyncRecordError(f"Unknown subscription status '{record.status}'")

        row = upsert_subscription(db, record, customer.user_id, status)
        db.commit()
    except SyncRecordError as e:
        logger.warning("[Sync] Skipping subscription %s (customer %s): %s", record.subscription_id, customer_id, e)
        summary.add_error(record.subscription_id, customer_id, str(e))
        return None
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[Sync] Database error syncing subscription %s: %s", record.subscription_id, e)
        summary.add_error(record.subscription_id, customer_id, f"Database error: {e}")
        return None

    summary.synced_count += 1

    # Mirror row is committed; a ledger failure is reported on its own line
    try:
        action = ledger_action_for(row.status)
        if action == LEDGER_ACTION_RECORD:
            result = record_commission_for_subscription(db, row, pricing=pricing)
            if result and result.created:
                summary.commissions_created += 1
        elif action == LEDGER_ACTION_CANCEL:
            summary.commissions_cancelled += cancel_pending_commissions(db, row.subscription_id)
    except Exception as e:
        db.rollback()
        logger.exception("[Sync] Commission update failed for subscription %s", record.subscription_id)
        summary.add_error(record.subscription_id, customer_id, f"Commission error: {e}")

    return row


def sync_all_subscriptions(
    db: Session,
    billing: BillingClient,
    pricing: Optional[PricingConfig] = None,
    page_size: int = SYNC_PAGE_SIZE,
    customer_id: Optional[str] = None,
) -> SyncSummary:
    """
    Run one sync pass over Stripe (or over one customer's subscriptions).

    Follows the starting_after cursor until Stripe reports no more pages.
    Raises BillingUnavailableError if a page cannot be fetched.
    """
    pricing = pricing or get_pricing_config()
    summary = SyncSummary()
    starting_after: Optional[str] = None
    pages = 0

    logger.info("[Sync] Starting subscription sync%s", f" for customer {customer_id}" if customer_id else "")

    while True:
        try:
            page = billing.list_subscriptions(
                starting_after=starting_after, limit=page_size, customer_id=customer_id
            )
        except stripe.StripeError as e:
            logger.error("[Sync] Stripe request failed after %d pages: %s", pages, e)
            raise BillingUnavailableError(f"Stripe request failed: {e}") from e
        pages += 1

        for record in page.subscriptions:
            reconcile_subscription(db, record, summary, pricing=pricing)

        if not page.has_more or not page.subscriptions:
            break
        starting_after = page.subscriptions[-1].subscription_id

    logger.info(
        "[Sync] Sync complete. Pages: %d, synced: %d, errors: %d, commissions created: %d, cancelled: %d",
        pages, summary.synced_count, summary.error_count,
        summary.commissions_created, summary.commissions_cancelled,
    )
    return summary


def run_sync_pass(
    db: Session,
    billing: BillingClient,
    pricing: Optional[PricingConfig] = None,
) -> SyncSummary:
    """Full sync pass behind the single-flight lock."""
    with sync_lock(db):
        return sync_all_subscriptions(db, billing, pricing=pricing)
