from app.api.v1 import billing, promo_codes, subscriptions

__all__ = [
    "billing",
    "promo_codes",
    "subscriptions",
]
