"""
Billing processor access.

Everything the commission pipeline needs from Stripe goes through a
BillingClient so the sync pass, the webhook and the promo-code admin can be
driven by a fake in tests. StripeBillingClient is the production
implementation, built once per process by get_billing_client().
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import stripe

from app.core.billing_config import (
    STRIPE_MAX_NETWORK_RETRIES,
    STRIPE_SECRET_KEY,
    STRIPE_TIMEOUT_SECONDS,
    STRIPE_WEBHOOK_SECRET,
)

logger = logging.getLogger(__name__)


@dataclass
class BillingSubscription:
    """The subset of a Stripe subscription the mirror stores."""
    subscription_id: str
    customer_id: Optional[str]
    status: str
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    payment_method_brand: Optional[str] = None
    payment_method_last4: Optional[str] = None
    created: Optional[datetime] = None


@dataclass
class SubscriptionPage:
    subscriptions: List[BillingSubscription] = field(default_factory=list)
    has_more: bool = False


def from_unix(ts: Optional[int]) -> Optional[datetime]:
    """Stripe epoch seconds -> naive UTC datetime (the storage convention)."""
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


def _expandable_id(value: Any) -> Optional[str]:
    # Expanded fields arrive as objects, unexpanded ones as bare ids
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def subscription_from_stripe(data: Dict[str, Any]) -> BillingSubscription:
    """Map a Stripe subscription (as a plain dict) to a BillingSubscription."""
    items = ((data.get("items") or {}).get("data")) or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}

    # Newer Stripe API versions moved the period bounds onto subscription items
    period_start = data.get("current_period_start") or first_item.get("current_period_start")
    period_end = data.get("current_period_end") or first_item.get("current_period_end")

    payment_method = data.get("default_payment_method")
    card = payment_method.get("card") if isinstance(payment_method, dict) else None

    return BillingSubscription(
        subscription_id=data["id"],
        customer_id=_expandable_id(data.get("customer")),
        status=data.get("status") or "",
        price_id=price.get("id") if isinstance(price, dict) else _expandable_id(price),
        current_period_start=from_unix(period_start),
        current_period_end=from_unix(period_end),
        cancel_at_period_end=bool(data.get("cancel_at_period_end")),
        payment_method_brand=(card or {}).get("brand"),
        payment_method_last4=(card or {}).get("last4"),
        created=from_unix(data.get("created")),
    )


class BillingClient(ABC):
    """Interface of the billing processor used by the commission pipeline.

    Subclasses must implement every method; an incomplete client fails at
    instantiation."""

    @abstractmethod
    def list_subscriptions(
        self,
        starting_after: Optional[str] = None,
        limit: int = 100,
        customer_id: Optional[str] = None,
    ) -> SubscriptionPage:
        raise NotImplementedError

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def retrieve_coupon(self, coupon_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def create_coupon(self, **params) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def create_promotion_code(self, **params) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def update_promotion_code(self, promotion_code_id: str, **params) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        raise NotImplementedError


class StripeBillingClient(BillingClient):
    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        timeout: float = STRIPE_TIMEOUT_SECONDS,
        max_network_retries: int = STRIPE_MAX_NETWORK_RETRIES,
    ):
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is not configured")
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        # Bounded timeout so one hung request cannot stall a whole sync pass
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        stripe.max_network_retries = max_network_retries

    @abstractmethod
    def list_subscriptions(
        self,
        starting_after: Optional[str] = None,
        limit: int = 100,
        customer_id: Optional[str] = None,
    ) -> SubscriptionPage:
        params: Dict[str, Any] = {
            "limit": limit,
            "status": "all",
            "expand": ["data.default_payment_method"],
        }
        if starting_after:
            params["starting_after"] = starting_after
        if customer_id:
            params["customer"] = customer_id

        result = stripe.Subscription.list(api_key=self.api_key, **params).to_dict()
        subscriptions = [subscription_from_stripe(item) for item in result.get("data") or []]
        logger.info("[Stripe] Fetched %d subscriptions (has_more=%s)", len(subscriptions), result.get("has_more"))
        return SubscriptionPage(subscriptions=subscriptions, has_more=bool(result.get("has_more")))

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return stripe.checkout.Session.retrieve(
            session_id,
            api_key=self.api_key,
            expand=["total_details.breakdown", "line_items.data.discounts"],
        ).to_dict()

    @abstractmethod
    def retrieve_coupon(self, coupon_id: str) -> Dict[str, Any]:
        return stripe.Coupon.retrieve(coupon_id, api_key=self.api_key).to_dict()

    @abstractmethod
    def create_coupon(self, **params) -> Dict[str, Any]:
        return stripe.Coupon.create(api_key=self.api_key, **params).to_dict()

    @abstractmethod
    def create_promotion_code(self, **params) -> Dict[str, Any]:
        return stripe.PromotionCode.create(api_key=self.api_key, **params).to_dict()

    @abstractmethod
    def update_promotion_code(self, promotion_code_id: str, **params) -> Dict[str, Any]:
        return stripe.PromotionCode.modify(promotion_code_id, api_key=self.api_key, **params).to_dict()

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise ValueError("STRIPE_WEBHOOK_SECRET is not configured")
        event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return event.to_dict()


_billing_client: Optional[BillingClient] = None


def get_billing_client() -> BillingClient:
    """FastAPI dependency: the process-wide Stripe client."""
    global _billing_client
    if _billing_client is None:
        _billing_client = StripeBillingClient(STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
    return _billing_client
