from app.domain.promo_code_operations import promo_code_ops
from app.domain.subscription_operations import subscription_ops
from app.domain.user_operations import user_ops
from app.domain.webhook_event_operations import webhook_event_ops

__all__ = [
    "promo_code_ops",
    "subscription_ops",
    "user_ops",
    "webhook_event_ops",
]
