from app.models.promo_code import DiscountType, PromoCode
from app.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus
from app.models.user import User, UserRole
from app.models.webhook_event import StripeWebhookEvent

__all__ = [
    "User",
    "UserRole",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "StripeWebhookEvent",
    "PromoCode",
    "DiscountType",
]
