from app.models.user import User, UserRole
from app.models.stripe_customer import StripeCustomer
from app.models.subscription import StripeSubscription, SubscriptionStatus
from app.models.promo_code import ResellerPromoCode, PromoCodeUsage
from app.models.payout import ResellerPayout, ResellerClient
from app.models.commission import ResellerCommission, CommissionStatus

__all__ = [
    "User",
    "UserRole",
    "StripeCustomer",
    "StripeSubscription",
    "SubscriptionStatus",
    "ResellerPromoCode",
    "PromoCodeUsage",
    "ResellerPayout",
    "ResellerClient",
    "ResellerCommission",
    "CommissionStatus",
]
