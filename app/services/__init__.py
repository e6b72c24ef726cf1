# Services package

from app.services.billing import BillingService
from app.services.stripe_service import StripeService

__all__ = [
    "BillingService",
    "StripeService",
]
