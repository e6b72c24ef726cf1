"""Pydantic schemas for API request/response validation."""

from app.schemas.base import CamelModel
from app.schemas.billing import (
    AddOnRequest,
    CancelRequest,
    CancelResponse,
    CheckoutRequest,
    CheckoutResponse,
    ConfirmRequest,
    ConfirmResponse,
    InvoiceInfo,
    InvoiceListResponse,
    PlanInfo,
    PortalResponse,
    WebhookResponse,
)
from app.schemas.promo_codes import (
    PromoCodeSummary,
    PromoCodeValidateRequest,
    PromoCodeValidateResponse,
)
from app.schemas.subscriptions import SubscriptionRecord

__all__ = [
    "AddOnRequest",
    "CamelModel",
    "CancelRequest",
    "CancelResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "ConfirmRequest",
    "ConfirmResponse",
    "InvoiceInfo",
    "InvoiceListResponse",
    "PlanInfo",
    "PortalResponse",
    "PromoCodeSummary",
    "PromoCodeValidateRequest",
    "PromoCodeValidateResponse",
    "SubscriptionRecord",
    "WebhookResponse",
]
