import json
import itertools
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import stripe
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.billing_config import PricingConfig
from app.db.base import Base
from app import models  # noqa: F401
from app.models.commission import CommissionStatus, ResellerCommission
from app.models.promo_code import PromoCodeUsage, ResellerPromoCode
from app.models.stripe_customer import StripeCustomer
from app.models.user import User, UserRole
from app.services.billing_client import BillingClient, BillingSubscription, SubscriptionPage

PERIOD_START = datetime(2026, 3, 1)
PERIOD_END = datetime(2026, 4, 1)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def pricing():
    return PricingConfig(base_price=39900, currency="eur", default_commission_rate=50)


class FakeBillingClient(BillingClient):
    """In-memory Stripe stand-in: paginates like Stripe and records writes."""

    def __init__(self, subscriptions=None):
        self.subscriptions = list(subscriptions or [])
        self.list_calls = []
        self.listing_error = None
        self.sessions = {}
        self.coupons = {}
        self.promotion_codes = {}
        self._ids = itertools.count(1)

    def list_subscriptions(self, starting_after=None, limit=100, customer_id=None):
        self.list_calls.append({"starting_after": starting_after, "limit": limit, "customer_id": customer_id})
        if self.listing_error is not None:
            raise self.listing_error
        items = [s for s in self.subscriptions if customer_id is None or s.customer_id == customer_id]
        start = 0
        if starting_after:
            start = [s.subscription_id for s in items].index(starting_after) + 1
        page = items[start:start + limit]
        return SubscriptionPage(subscriptions=page, has_more=start + limit < len(items))

    def retrieve_checkout_session(self, session_id):
        return self.sessions[session_id]

    def retrieve_coupon(self, coupon_id):
        if coupon_id not in self.coupons:
            raise stripe.InvalidRequestError(f"No such coupon: '{coupon_id}'", "coupon")
        return self.coupons[coupon_id]

    def create_coupon(self, **params):
        coupon = {
            "id": f"coupon_{next(self._ids)}",
            "percent_off": params.get("percent_off"),
            "amount_off": params.get("amount_off"),
            "currency": params.get("currency"),
            "duration": params.get("duration"),
            "duration_in_months": params.get("duration_in_months"),
            "name": params.get("name"),
        }
        self.coupons[coupon["id"]] = coupon
        return coupon

    def create_promotion_code(self, **params):
        promotion_code = {
            "id": f"promo_{next(self._ids)}",
            "code": params["code"],
            "coupon": params["coupon"],
            "metadata": params.get("metadata") or {},
            "active": True,
        }
        self.promotion_codes[promotion_code["id"]] = promotion_code
        return promotion_code

    def update_promotion_code(self, promotion_code_id, **params):
        self.promotion_codes[promotion_code_id].update(params)
        return self.promotion_codes[promotion_code_id]

    def construct_event(self, payload, signature):
        if signature != "valid-signature":
            raise stripe.SignatureVerificationError("No signatures found matching the expected signature", signature)
        return json.loads(payload)


@pytest.fixture
def billing():
    return FakeBillingClient()


def make_user(db, email, role=UserRole.RESTAURANT_OWNER, supabase_id=None, full_name=None):
    user = User(email=email, role=role, supabase_id=supabase_id, full_name=full_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_customer(db, user, customer_id):
    db.add(StripeCustomer(customer_id=customer_id, user_id=user.id))
    db.commit()


def make_promo_code(db, reseller, stripe_id="promo_r1", rate=50, percent=20, amount=None, currency=None):
    promo_code = ResellerPromoCode(
        reseller_id=reseller.id,
        promo_code_stripe_id=stripe_id,
        promo_code_text=stripe_id.upper(),
        coupon_id=f"coupon_{stripe_id}",
        commission_rate=Decimal(str(rate)),
        discount_percent=Decimal(str(percent)) if percent is not None else None,
        discount_amount=amount,
        currency=currency,
    )
    db.add(promo_code)
    db.commit()
    db.refresh(promo_code)
    return promo_code


def make_usage(db, customer_id, promo_code=None, applied_at=None, session_id=None, stripe_id=None):
    usage = PromoCodeUsage(
        customer_id=customer_id,
        promo_code_id=promo_code.id if promo_code else None,
        promo_code_stripe_id=stripe_id or (promo_code.promo_code_stripe_id if promo_code else None),
        checkout_session_id=session_id,
        applied_at=applied_at or datetime(2026, 2, 1),
    )
    db.add(usage)
    db.commit()
    db.refresh(usage)
    return usage


def make_commission(db, reseller, client, subscription_id="sub_1", amount=15960,
                    status=CommissionStatus.PENDING, currency="eur", period_start=PERIOD_START):
    commission = ResellerCommission(
        reseller_id=reseller.id,
        user_id=client.id,
        subscription_id=subscription_id,
        commission_amount=amount,
        commission_rate=Decimal("50"),
        currency=currency,
        status=status,
        period_start=period_start,
        period_end=period_start + timedelta(days=30),
    )
    db.add(commission)
    db.commit()
    db.refresh(commission)
    return commission


def billing_subscription(subscription_id, customer_id, status="active", price_id="price_pro",
                         period_start=PERIOD_START, period_end=PERIOD_END):
    return BillingSubscription(
        subscription_id=subscription_id,
        customer_id=customer_id,
        status=status,
        price_id=price_id,
        current_period_start=period_start,
        current_period_end=period_end,
    )


@pytest.fixture
def reseller(db):
    return make_user(db, "reseller@example.com", role=UserRole.RESELLER, supabase_id="5cff2718-2d6a-42ba")


@pytest.fixture
def client_user(db):
    return make_user(db, "owner@example.com")


@pytest.fixture
def attributed_customer(db, reseller, client_user):
    """cus_1 belongs to client_user and checked out with the reseller's 20% code."""
    make_customer(db, client_user, "cus_1")
    promo_code = make_promo_code(db, reseller)
    make_usage(db, "cus_1", promo_code, session_id="cs_1")
    return promo_code
