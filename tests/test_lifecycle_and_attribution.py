from datetime import datetime

import pytest

from app.models.commission import CommissionStatus, IllegalCommissionTransition, ensure_transition
from app.models.subscription import SubscriptionStatus
from app.services.commission_lifecycle import (
    EARNING_STATUSES,
    LEDGER_ACTION_CANCEL,
    LEDGER_ACTION_NONE,
    LEDGER_ACTION_RECORD,
    NEUTRAL_STATUSES,
    TERMINAL_FAILURE_STATUSES,
    cancel_pending_commissions,
    ledger_action_for,
)
from app.services.promo_attribution import latest_promo_usage
from conftest import make_commission, make_promo_code, make_usage


class TestLedgerActions:
    def test_every_status_has_exactly_one_action(self):
        for status in SubscriptionStatus:
            memberships = [status in group for group in (EARNING_STATUSES, TERMINAL_FAILURE_STATUSES, NEUTRAL_STATUSES)]
            assert memberships.count(True) == 1, status

    def test_actions(self):
        assert ledger_action_for(SubscriptionStatus.ACTIVE) == LEDGER_ACTION_RECORD
        assert ledger_action_for(SubscriptionStatus.CANCELED) == LEDGER_ACTION_CANCEL
        assert ledger_action_for(SubscriptionStatus.UNPAID) == LEDGER_ACTION_CANCEL
        assert ledger_action_for(SubscriptionStatus.INCOMPLETE_EXPIRED) == LEDGER_ACTION_CANCEL
        assert ledger_action_for(SubscriptionStatus.TRIALING) == LEDGER_ACTION_NONE
        assert ledger_action_for(SubscriptionStatus.PAST_DUE) == LEDGER_ACTION_NONE

    def test_unknown_status_raises(self):
        with pytest.raises(ValueError):
            ledger_action_for("on_fire")


class TestCommissionTransitions:
    def test_pending_can_move(self):
        ensure_transition(CommissionStatus.PENDING, CommissionStatus.PAID)
        ensure_transition(CommissionStatus.PENDING, CommissionStatus.CANCELLED)

    @pytest.mark.parametrize("current,target", [
        (CommissionStatus.PAID, CommissionStatus.CANCELLED),
        (CommissionStatus.PAID, CommissionStatus.PENDING),
        (CommissionStatus.CANCELLED, CommissionStatus.PAID),
        (CommissionStatus.CANCELLED, CommissionStatus.PENDING),
    ])
    def test_final_states_do_not_move(self, current, target):
        with pytest.raises(IllegalCommissionTransition):
            ensure_transition(current, target)


class TestCancelPendingCommissions:
    def test_cancels_only_pending_rows(self, db, reseller, client_user):
        pending = make_commission(db, reseller, client_user, period_start=datetime(2026, 1, 1))
        paid = make_commission(db, reseller, client_user, period_start=datetime(2026, 2, 1), status=CommissionStatus.PAID)
        cancelled = make_commission(db, reseller, client_user, period_start=datetime(2026, 3, 1),
                                    status=CommissionStatus.CANCELLED)
        other = make_commission(db, reseller, client_user, subscription_id="sub_other")

        assert cancel_pending_commissions(db, "sub_1") == 1
        assert cancel_pending_commissions(db, "sub_1") == 0

        for commission in (pending, paid, cancelled, other):
            db.refresh(commission)
        assert pending.status == CommissionStatus.CANCELLED
        assert paid.status == CommissionStatus.PAID
        assert cancelled.status == CommissionStatus.CANCELLED
        assert other.status == CommissionStatus.PENDING


class TestPromoAttribution:
    def test_no_usage(self, db):
        assert latest_promo_usage(db, "cus_unknown") is None

    def test_latest_applied_at_wins(self, db, reseller):
        old_code = make_promo_code(db, reseller, stripe_id="promo_old")
        new_code = make_promo_code(db, reseller, stripe_id="promo_new")
        make_usage(db, "cus_1", new_code, applied_at=datetime(2026, 2, 1), session_id="cs_2")
        make_usage(db, "cus_1", old_code, applied_at=datetime(2026, 1, 1), session_id="cs_1")

        assert latest_promo_usage(db, "cus_1").promo_code_id == new_code.id

    def test_tie_goes_to_later_insert(self, db, reseller):
        first = make_promo_code(db, reseller, stripe_id="promo_a")
        second = make_promo_code(db, reseller, stripe_id="promo_b")
        same_time = datetime(2026, 2, 1, 12, 0)
        make_usage(db, "cus_1", first, applied_at=same_time, session_id="cs_a")
        later = make_usage(db, "cus_1", second, applied_at=same_time, session_id="cs_b")

        assert latest_promo_usage(db, "cus_1").id == later.id

    def test_other_customers_are_ignored(self, db, reseller):
        code = make_promo_code(db, reseller)
        make_usage(db, "cus_2", code, session_id="cs_x")

        assert latest_promo_usage(db, "cus_1") is None
