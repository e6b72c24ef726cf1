"""Request and response schemas for the billing endpoints."""

from datetime import datetime

from pydantic import Field

from app.schemas.base import CamelModel


class PlanInfo(CamelModel):
    """Public plan information."""

    plan: str
    display_name: str
    price_monthly: int  # cents
    is_paid: bool


class AddOnRequest(CamelModel):
    type: str
    quantity: int = Field(default=1, ge=1)


class CheckoutRequest(CamelModel):
    """Request to create a checkout session."""

    plan: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None
    add_ons: list[AddOnRequest] = Field(default_factory=list)
    promo_code: str | None = None


class CheckoutResponse(CamelModel):
    id: str
    url: str


class ConfirmRequest(CamelModel):
    session_id: str | None = None


class ConfirmResponse(CamelModel):
    ok: bool = True
    plan: str
    status: str


class CancelRequest(CamelModel):
    immediate: bool = False


class CancelResponse(CamelModel):
    success: bool = True
    cancel_at_period_end: bool
    cancel_at: datetime | None
    current_period_end: datetime | None


class PortalResponse(CamelModel):
    url: str


class InvoiceInfo(CamelModel):
    """A Stripe invoice as shown on the billing page. Amounts in dollars."""

    id: str
    number: str | None = None
    amount: float
    currency: str
    status: str | None = None
    created: int | None = None
    due_date: int | None = None
    paid_at: int | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf: str | None = None
    description: str = "Subscription"


class InvoiceListResponse(CamelModel):
    invoices: list[InvoiceInfo]


class WebhookResponse(CamelModel):
    received: bool = True
    status: str
