"""Build Stripe Checkout sessions for plan subscriptions."""

import json
import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from app.config import settings
from app.config.plans import PlanCatalog
from app.core.exceptions import PaymentsNotConfiguredError, UpstreamError, ValidationError
from app.models.subscription import SubscriptionPlan
from app.models.user import User
from app.services.billing.promo_resolver import PromoResolver
from app.services.billing.types import CheckoutResult
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

SESSION_ID_PLACEHOLDER = "session_id={CHECKOUT_SESSION_ID}"


@dataclass(frozen=True)
class CheckoutAddOn:
    type: str
    quantity: int = 1


def with_session_id(url: str) -> str:
    """Append Stripe's session id placeholder so the success page can confirm."""
    if "{CHECKOUT_SESSION_ID}" in url:
        return url
    separator = "&" if urlsplit(url).query else "?"
    return f"{url}{separator}{SESSION_ID_PLACEHOLDER}"


def default_success_url() -> str:
    return settings.stripe_success_url or f"{settings.frontend_url}/subscriptions?success=true"


def default_cancel_url() -> str:
    return settings.stripe_cancel_url or f"{settings.frontend_url}/subscriptions?canceled=true"


class CheckoutInitiator:
    """
    Creates hosted Checkout sessions.

    The caller is responsible for authorization (billing role). Session and
    subscription metadata carry user_id, org_id and plan; the webhook uses
    them to find the owner without another Stripe call.
    """

    def __init__(
        self,
        stripe_service: StripeService,
        catalog: PlanCatalog,
        promo_resolver: PromoResolver,
    ) -> None:
        self.stripe = stripe_service
        self.catalog = catalog
        self.promo_resolver = promo_resolver

    def _line_items(
        self,
        price_id: str,
        add_ons: list[CheckoutAddOn],
    ) -> tuple[list[dict[str, object]], list[dict[str, object]]]:
        """Base plan first, then recognised add-ons. Unknown add-ons are dropped."""
        line_items: list[dict[str, object]] = [{"price": price_id, "quantity": 1}]
        accepted: list[dict[str, object]] = []
        for add_on in add_ons:
            addon_price = self.catalog.addon_price_id(add_on.type)
            if not addon_price:
                logger.info(f"Ignoring unrecognised add-on type: {add_on.type}")
                continue
            quantity = max(1, int(add_on.quantity or 1))
            line_items.append({"price": addon_price, "quantity": quantity})
            accepted.append({"type": add_on.type, "quantity": quantity})
        return line_items, accepted

    async def create_checkout(
        self,
        db: AsyncSession,
        user: User,
        plan: str | None = None,
        add_ons: list[CheckoutAddOn] | None = None,
        promo_code: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CheckoutResult:
        """Create a subscription-mode Checkout session. Returns its id and URL."""
        if not self.stripe.enabled:
            raise PaymentsNotConfiguredError()

        resolved_plan = self.catalog.normalise_plan(plan or SubscriptionPlan.BASIC.value)
        price_id = self.catalog.price_id_for(resolved_plan) if resolved_plan else None
        if resolved_plan is None or not price_id:
            raise ValidationError(f"Unknown or unavailable plan: {plan}")

        line_items, accepted_add_ons = self._line_items(price_id, add_ons or [])

        metadata: dict[str, str] = {
            "user_id": str(user.id),
            "org_id": str(user.org_id) if user.org_id else "",
            "plan": resolved_plan.value,
        }
        if accepted_add_ons:
            metadata["add_ons"] = json.dumps(accepted_add_ons)

        promo = await self.promo_resolver.resolve(db, promo_code, resolved_plan)
        if promo:
            metadata["promo_code"] = promo.code
            metadata["promo_source"] = promo.source

        params: dict[str, object] = {
            "line_items": line_items,
            "success_url": with_session_id(success_url or default_success_url()),
            "cancel_url": cancel_url or default_cancel_url(),
            "customer_email": user.email,
            "client_reference_id": str(user.org_id or user.id),
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        # Stripe rejects discounts together with allow_promotion_codes
        if promo:
            params["discounts"] = [promo.discount]
        else:
            params["allow_promotion_codes"] = True

        try:
            session = self.stripe.create_checkout_session(**params)
        except StripeError as e:
            raise UpstreamError("Failed to create checkout session") from e

        logger.info(
            f"Checkout session {session.get('id')} for user {user.id}, plan {resolved_plan.value}"
            f"{', promo ' + promo.code if promo else ''}"
        )
        return CheckoutResult(id=str(session.get("id") or ""), url=str(session.get("url") or ""))
