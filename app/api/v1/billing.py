"""Billing API endpoints for subscription management via Stripe."""

import logging
import uuid as uuid_pkg

from fastapi import APIRouter, Request
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from app.api.deps import Billing, BillingManager, CurrentUser, DbSession
from app.config import settings
from app.config.plans import PLANS
from app.core.exceptions import NotFoundError, PaymentsNotConfiguredError, UpstreamError
from app.domain.subscription_operations import subscription_ops
from app.schemas.billing import (
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
from app.services.billing import BillingService
from app.services.billing.checkout import CheckoutAddOn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def _format_invoice(invoice: dict) -> InvoiceInfo:
    lines = (invoice.get("lines") or {}).get("data") or []
    return InvoiceInfo(
        id=invoice.get("id", ""),
        number=invoice.get("number"),
        amount=(invoice.get("amount_paid") or 0) / 100,
        currency=str(invoice.get("currency") or "usd").upper(),
        status=invoice.get("status"),
        created=invoice.get("created"),
        due_date=invoice.get("due_date"),
        paid_at=(invoice.get("status_transitions") or {}).get("paid_at"),
        hosted_invoice_url=invoice.get("hosted_invoice_url"),
        invoice_pdf=invoice.get("invoice_pdf"),
        description=(lines[0].get("description") if lines else None) or "Subscription",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Public Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.get("/plans", response_model=list[PlanInfo])
async def list_plans() -> list[PlanInfo]:
    """
    List all available plans (public endpoint).

    No authentication required.
    """
    return [
        PlanInfo(
            plan=plan.plan.value,
            display_name=plan.display_name,
            price_monthly=plan.price_monthly,
            is_paid=plan.is_paid,
        )
        for plan in PLANS.values()
    ]


@router.post("/webhook", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    db: DbSession,
    billing: Billing,
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    Verified by Stripe signature, no user authentication. Unresolvable or
    unhandled events are acknowledged; only an unexpected failure returns
    500 so Stripe retries the delivery.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    result = await billing.process_webhook(db, payload, signature)
    return WebhookResponse(status=result.status)


# ─────────────────────────────────────────────────────────────────────────────
# Authenticated Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    db: DbSession,
    current_user: BillingManager,
    billing: Billing,
) -> CheckoutResponse:
    """
    Create a Stripe Checkout session for a plan subscription.

    Property managers and admins only. Returns the session id and the URL
    to redirect the user to.
    """
    result = await billing.checkout.create_checkout(
        db,
        current_user,
        plan=request.plan,
        add_ons=[CheckoutAddOn(type=a.type, quantity=a.quantity) for a in request.add_ons],
        promo_code=request.promo_code,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
    )
    return CheckoutResponse(id=result.id, url=result.url)


@router.post("/confirm", response_model=ConfirmResponse)
async def confirm_checkout(
    request: ConfirmRequest,
    db: DbSession,
    current_user: CurrentUser,
    billing: Billing,
) -> ConfirmResponse:
    """
    Apply a completed checkout from the success page.

    Safe to call before, after or instead of the checkout webhook.
    """
    result = await billing.actions.confirm(db, current_user, request.session_id)
    return ConfirmResponse(plan=result.plan.value, status=result.status.value)


@router.post("/cancel", response_model=CancelResponse)
async def cancel_subscription(
    db: DbSession,
    current_user: BillingManager,
    billing: Billing,
    request: CancelRequest | None = None,
) -> CancelResponse:
    """
    Cancel the caller's subscription.

    At period end by default; `immediate` ends it now and moves the
    account to the free plan.
    """
    immediate = request.immediate if request else False
    result = await billing.actions.cancel(db, current_user, immediate=immediate)
    return CancelResponse(
        cancel_at_period_end=result.cancel_at_period_end,
        cancel_at=result.cancel_at,
        current_period_end=result.current_period_end,
    )


async def _portal_url(
    db: AsyncSession,
    user_id: uuid_pkg.UUID,
    billing: BillingService,
    failure: str,
) -> str:
    """Billing-portal URL for the account's latest Stripe customer."""
    if not billing.enabled:
        raise PaymentsNotConfiguredError()

    subscription = await subscription_ops.get_latest_for_user(
        db, user_id, require_customer_id=True
    )
    if not subscription or not subscription.stripe_customer_id:
        raise NotFoundError("Stripe customer")

    try:
        return billing.stripe.create_portal_session(
            customer_id=subscription.stripe_customer_id,
            return_url=f"{settings.frontend_url}/subscriptions",
        )
    except StripeError as e:
        raise UpstreamError(failure) from e


@router.get("/portal", response_model=PortalResponse)
async def create_portal(
    db: DbSession,
    current_user: BillingManager,
    billing: Billing,
) -> PortalResponse:
    """Create a Stripe Customer Portal session for self-service billing."""
    url = await _portal_url(db, current_user.id, billing, "Failed to create billing portal session")
    return PortalResponse(url=url)


@router.post("/payment-method", response_model=PortalResponse)
async def update_payment_method(
    db: DbSession,
    current_user: BillingManager,
    billing: Billing,
) -> PortalResponse:
    """Portal session for changing the card on file."""
    url = await _portal_url(db, current_user.id, billing, "Failed to update payment method")
    return PortalResponse(url=url)


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    db: DbSession,
    current_user: BillingManager,
    billing: Billing,
) -> InvoiceListResponse:
    """List the caller's Stripe invoices, newest first."""
    if not billing.enabled:
        raise PaymentsNotConfiguredError()

    subscription = await subscription_ops.get_latest_for_user(
        db, current_user.id, require_customer_id=True
    )
    if not subscription or not subscription.stripe_customer_id:
        return InvoiceListResponse(invoices=[])

    try:
        invoices = billing.stripe.list_invoices(subscription.stripe_customer_id)
    except StripeError as e:
        raise UpstreamError("Failed to fetch invoices") from e
    return InvoiceListResponse(invoices=[_format_invoice(invoice) for invoice in invoices])
