from datetime import datetime
from decimal import Decimal

import pytest

from app.core.billing_config import PricingConfig
from app.models.commission import CommissionStatus, ResellerCommission
from app.models.subscription import StripeSubscription, SubscriptionStatus
from app.services import commission_ledger
from app.services.commission_ledger import (
    CommissionError,
    compute_commission_amount,
    discounted_price,
    record_commission,
    record_commission_for_subscription,
    record_manual_commission,
)
from conftest import PERIOD_END, PERIOD_START, make_promo_code


def mirror_row(db, client_user, promo_code, status=SubscriptionStatus.ACTIVE, period_start=PERIOD_START,
               subscription_id="sub_1", price_id="price_pro"):
    row = StripeSubscription(
        subscription_id=subscription_id,
        customer_id="cus_1",
        user_id=client_user.id,
        price_id=price_id,
        current_period_start=period_start,
        current_period_end=PERIOD_END,
        status=status,
        promo_code_id=promo_code.id if promo_code else None,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


class TestCommissionArithmetic:
    def test_reference_example(self):
        assert compute_commission_amount(39900, 50, discount_percent=20) == 15960

    def test_no_discount(self):
        assert compute_commission_amount(39900, 50) == 19950

    def test_half_cent_rounds_up(self):
        assert compute_commission_amount(101, 50) == 51
        assert compute_commission_amount(1, 50) == 1
        assert compute_commission_amount(999, 50) == 500

    def test_half_cent_after_discount_rounds_up(self):
        # 39900 * 0.85 = 33915, half of it is 16957.5
        assert compute_commission_amount(39900, 50, discount_percent=15) == 16958

    def test_below_half_rounds_down(self):
        # 39900 * 0.8 * 0.333 = 10629.36
        assert compute_commission_amount(39900, Decimal("33.3"), discount_percent=20) == 10629

    def test_fractional_rate(self):
        assert compute_commission_amount(1000, Decimal("12.5")) == 125

    def test_float_inputs_are_deterministic(self):
        assert compute_commission_amount(39900, 50.0, discount_percent=20.0) == 15960

    def test_unset_percent_means_no_discount(self):
        assert discounted_price(39900) == Decimal("39900")
        assert discounted_price(39900, discount_percent=None) == Decimal("39900")

    def test_zero_rate(self):
        assert compute_commission_amount(39900, 0, discount_percent=20) == 0


class TestRecordCommission:
    def test_creates_pending_commission(self, db, client_user, attributed_customer, pricing):
        row = mirror_row(db, client_user, attributed_customer)

        result = record_commission(db, row, attributed_customer, pricing=pricing)

        assert result.created is True
        commission = result.commission
        assert commission.commission_amount == 15960
        assert commission.status == CommissionStatus.PENDING
        assert commission.reseller_id == attributed_customer.reseller_id
        assert commission.user_id == client_user.id
        assert commission.currency == "eur"
        assert commission.period_start == PERIOD_START

    def test_amount_off_code_earns_on_full_base_price(self, db, reseller, client_user, pricing):
        promo_code = make_promo_code(db, reseller, stripe_id="promo_fixed", percent=None, amount=5000, currency="eur")
        row = mirror_row(db, client_user, promo_code)

        result = record_commission(db, row, promo_code, pricing=pricing)

        assert result.commission.commission_amount == 19950

    def test_second_call_for_same_period_is_a_noop(self, db, client_user, attributed_customer, pricing):
        row = mirror_row(db, client_user, attributed_customer)

        first = record_commission(db, row, attributed_customer, pricing=pricing)
        second = record_commission(db, row, attributed_customer, pricing=pricing)

        assert second.created is False
        assert second.commission.id == first.commission.id
        assert db.query(ResellerCommission).count() == 1

    def test_new_period_gets_new_commission(self, db, client_user, attributed_customer, pricing):
        row = mirror_row(db, client_user, attributed_customer)
        record_commission(db, row, attributed_customer, pricing=pricing)

        row.current_period_start = datetime(2026, 4, 1)
        db.commit()
        result = record_commission(db, row, attributed_customer, pricing=pricing)

        assert result.created is True
        assert db.query(ResellerCommission).count() == 2

    def test_plan_price_override(self, db, client_user, attributed_customer):
        row = mirror_row(db, client_user, attributed_customer, price_id="price_big")
        pricing = PricingConfig(plan_prices={"price_big": 100000})

        result = record_commission(db, row, attributed_customer, pricing=pricing)

        assert result.commission.commission_amount == 40000

    def test_missing_period_raises(self, db, client_user, attributed_customer, pricing):
        row = mirror_row(db, client_user, attributed_customer)
        row.current_period_start = None

        with pytest.raises(CommissionError):
            record_commission(db, row, attributed_customer, pricing=pricing)

    def test_lost_insert_race_returns_existing_row(self, db, client_user, attributed_customer, pricing, monkeypatch):
        row = mirror_row(db, client_user, attributed_customer)
        winner = record_commission(db, row, attributed_customer, pricing=pricing).commission

        real_find = commission_ledger.find_commission
        calls = []

        def find_after_race(*args):
            calls.append(args)
            # First lookup happens "before" the concurrent insert landed
            return None if len(calls) == 1 else real_find(*args)

        monkeypatch.setattr(commission_ledger, "find_commission", find_after_race)
        result = record_commission(db, row, attributed_customer, pricing=pricing)

        assert result.created is False
        assert result.commission.id == winner.id
        assert db.query(ResellerCommission).count() == 1


class TestRecordCommissionForSubscription:
    def test_only_active_subscriptions_earn(self, db, client_user, attributed_customer, pricing):
        row = mirror_row(db, client_user, attributed_customer, status=SubscriptionStatus.TRIALING)

        assert record_commission_for_subscription(db, row, pricing=pricing) is None
        assert db.query(ResellerCommission).count() == 0

    def test_unattributed_subscription_earns_nothing(self, db, client_user, pricing):
        row = mirror_row(db, client_user, None)

        assert record_commission_for_subscription(db, row, pricing=pricing) is None

    def test_uses_promo_code_rate(self, db, reseller, client_user, pricing):
        promo_code = make_promo_code(db, reseller, stripe_id="promo_30", rate=30, percent=None, amount=9900,
                                     currency="eur")
        row = mirror_row(db, client_user, promo_code)

        result = record_commission_for_subscription(db, row, pricing=pricing)

        # (39900 - 9900) * 30%
        assert result.commission.commission_amount == 9000
        assert result.commission.commission_rate == Decimal("30")


class TestManualCommission:
    def test_uses_paid_amount_without_discount(self, db, client_user, attributed_customer, pricing):
        mirror_row(db, client_user, attributed_customer)

        result = record_manual_commission(db, "sub_1", 30000, pricing=pricing)

        assert result.created is True
        assert result.commission.commission_amount == 15000

    def test_idempotent_per_period(self, db, client_user, attributed_customer, pricing):
        mirror_row(db, client_user, attributed_customer)

        record_manual_commission(db, "sub_1", 30000, pricing=pricing)
        again = record_manual_commission(db, "sub_1", 30000, pricing=pricing)

        assert again.created is False
        assert db.query(ResellerCommission).count() == 1

    @pytest.mark.parametrize("amount", [0, -100, True, 12.5])
    def test_rejects_invalid_amount(self, db, amount):
        with pytest.raises(CommissionError, match="invalid amount"):
            record_manual_commission(db, "sub_1", amount)

    def test_unknown_subscription(self, db):
        with pytest.raises(CommissionError, match="not found"):
            record_manual_commission(db, "sub_missing", 30000)

    def test_inactive_subscription(self, db, client_user, attributed_customer):
        mirror_row(db, client_user, attributed_customer, status=SubscriptionStatus.PAST_DUE)

        with pytest.raises(CommissionError, match="past_due"):
            record_manual_commission(db, "sub_1", 30000)

    def test_unattributed_subscription(self, db, client_user):
        mirror_row(db, client_user, None)

        with pytest.raises(CommissionError, match="reseller promo code"):
            record_manual_commission(db, "sub_1", 30000)
