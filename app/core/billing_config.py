import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

# Reseller program: one plan price, one payout currency.
# 39900 = 399.00 EUR per billing period.
DEFAULT_BASE_PRICE = 39900
DEFAULT_CURRENCY = "eur"
DEFAULT_COMMISSION_RATE = 50

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_TIMEOUT_SECONDS = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "20"))
STRIPE_MAX_NETWORK_RETRIES = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))

SYNC_PAGE_SIZE = int(os.getenv("SYNC_PAGE_SIZE", "100"))  # Stripe max is 100


def _parse_plan_prices(raw: Optional[str]) -> Dict[str, int]:
    """Parse RESELLER_PLAN_PRICES, e.g. '{"price_123": 39900, "price_456": 49900}'."""
    if not raw or not raw.strip():
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("RESELLER_PLAN_PRICES must be a JSON object of price_id -> minor units")
    return {str(price_id): int(amount) for price_id, amount in parsed.items()}


@dataclass(frozen=True)
class PricingConfig:
    """Commission pricing inputs for the reseller program."""
    base_price: int = DEFAULT_BASE_PRICE
    currency: str = DEFAULT_CURRENCY
    default_commission_rate: int = DEFAULT_COMMISSION_RATE
    plan_prices: Dict[str, int] = field(default_factory=dict)

    def base_price_for(self, price_id: Optional[str]) -> int:
        if price_id and price_id in self.plan_prices:
            return self.plan_prices[price_id]
        return self.base_price


def get_pricing_config() -> PricingConfig:
    return PricingConfig(
        base_price=int(os.getenv("RESELLER_BASE_PRICE", str(DEFAULT_BASE_PRICE))),
        currency=os.getenv("RESELLER_CURRENCY", DEFAULT_CURRENCY).lower(),
        default_commission_rate=int(os.getenv("DEFAULT_COMMISSION_RATE", str(DEFAULT_COMMISSION_RATE))),
        plan_prices=_parse_plan_prices(os.getenv("RESELLER_PLAN_PRICES")),
    )
