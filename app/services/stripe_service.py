"""Stripe payment service for subscription management."""

import logging
from typing import Any

import stripe
from stripe import SignatureVerificationError, StripeError

from app.config import settings

logger = logging.getLogger(__name__)


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject (or plain mapping) into a plain nested dict."""
    if isinstance(obj, dict):
        return dict(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def is_already_exists(error: StripeError) -> bool:
    """True when Stripe rejected a create because the id is taken."""
    return getattr(error, "code", None) == "resource_already_exists" or (
        "already exists" in str(error).lower()
    )


class StripeService:
    """
    Handles all Stripe API interactions.

    Constructed once per process and passed to the billing components, so a
    test can swap in a double without touching module globals. The API key
    is sent per call rather than set on the stripe module.

    An empty secret key means payments are not configured; callers check
    `enabled` before doing anything billable.
    """

    def __init__(self, api_key: str, webhook_secret: str = "") -> None:
        self._api_key = api_key
        self._webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls) -> "StripeService":
        return cls(settings.stripe_secret_key, settings.stripe_webhook_secret)

    @property
    def enabled(self) -> bool:
        """Check if Stripe is configured (has secret key)."""
        return bool(self._api_key)

    @property
    def webhooks_enabled(self) -> bool:
        return bool(self._api_key and self._webhook_secret)

    # ─────────────────────────────────────────────────────────────────────────────
    # Checkout & Portal
    # ─────────────────────────────────────────────────────────────────────────────

    def create_checkout_session(self, **params: Any) -> dict[str, Any]:
        """
        Create a Stripe Checkout session in subscription mode.

        Returns the session as a dict (id, url, ...). Raises StripeError.
        """
        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                mode="subscription",
                **params,
            )
            result = _to_dict(session)
            logger.info(f"Created checkout session {result.get('id')}")
            return result
        except StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        """Retrieve a Checkout session with its subscription expanded. Raises StripeError."""
        try:
            session = stripe.checkout.Session.retrieve(
                session_id,
                api_key=self._api_key,
                expand=["subscription", "subscription.items.data.price"],
            )
            return _to_dict(session)
        except StripeError as e:
            logger.error(f"Failed to retrieve checkout session {session_id}: {e}")
            raise

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a Stripe Customer Portal session for self-service billing.

        Returns the portal session URL.
        """
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self._api_key,
                customer=customer_id,
                return_url=return_url,
            )
            return _to_dict(session).get("url") or ""
        except StripeError as e:
            logger.error(f"Failed to create portal session: {e}")
            raise

    # ─────────────────────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────────────────────

    def get_subscription(self, stripe_subscription_id: str) -> dict[str, Any] | None:
        """Retrieve a Stripe subscription by ID. Returns None on failure."""
        try:
            sub = stripe.Subscription.retrieve(
                stripe_subscription_id,
                api_key=self._api_key,
                expand=["items.data.price"],
            )
            return _to_dict(sub)
        except StripeError as e:
            logger.error(f"Failed to retrieve subscription {stripe_subscription_id}: {e}")
            return None

    def cancel_subscription(
        self,
        stripe_subscription_id: str,
        immediate: bool = False,
    ) -> dict[str, Any]:
        """
        Cancel a Stripe subscription, immediately or at period end.

        Returns the updated subscription. Raises StripeError.
        """
        try:
            if immediate:
                sub = stripe.Subscription.cancel(stripe_subscription_id, api_key=self._api_key)
                logger.info(f"Cancelled subscription {stripe_subscription_id} immediately")
            else:
                sub = stripe.Subscription.modify(
                    stripe_subscription_id,
                    api_key=self._api_key,
                    cancel_at_period_end=True,
                )
                logger.info(f"Marked subscription {stripe_subscription_id} for cancellation")
            return _to_dict(sub)
        except StripeError as e:
            logger.error(f"Failed to cancel subscription: {e}")
            raise

    # ─────────────────────────────────────────────────────────────────────────────
    # Promotion Codes & Coupons
    # ─────────────────────────────────────────────────────────────────────────────

    def find_promotion_code(self, code: str) -> dict[str, Any] | None:
        """Find an active promotion code by its customer-facing code. Raises StripeError."""
        result = stripe.PromotionCode.list(
            api_key=self._api_key,
            code=code,
            active=True,
            limit=1,
        )
        data = _to_dict(result).get("data") or []
        return _to_dict(data[0]) if data else None

    def find_coupon(self, code: str) -> dict[str, Any] | None:
        """
        Find a coupon whose id or name matches the code (case-insensitive).

        Only the first 100 coupons are searched. Raises StripeError.
        """
        result = stripe.Coupon.list(api_key=self._api_key, limit=100)
        wanted = code.lower()
        for coupon in _to_dict(result).get("data") or []:
            coupon = _to_dict(coupon)
            if str(coupon.get("id", "")).lower() == wanted:
                return coupon
            if str(coupon.get("name") or "").lower() == wanted:
                return coupon
        return None

    def get_or_create_coupon(
        self,
        coupon_id: str,
        *,
        percent_off: float | None = None,
        amount_off: int | None = None,
        name: str | None = None,
    ) -> str:
        """
        Create a one-time coupon with a fixed id.

        Returns the coupon ID. If a coupon with that id already exists, its id
        is reused. Raises StripeError otherwise.
        """
        params: dict[str, Any] = {"id": coupon_id, "duration": "once", "name": name or coupon_id}
        if percent_off is not None:
            params["percent_off"] = percent_off
        else:
            params["amount_off"] = amount_off
            params["currency"] = "usd"

        try:
            coupon = stripe.Coupon.create(api_key=self._api_key, **params)
            coupon_dict = _to_dict(coupon)
            logger.info(f"Created coupon: {coupon_dict.get('id')}")
            return str(coupon_dict.get("id") or coupon_id)
        except StripeError as e:
            if is_already_exists(e):
                return coupon_id
            logger.error(f"Failed to create coupon {coupon_id}: {e}")
            raise

    # ─────────────────────────────────────────────────────────────────────────────
    # Customers & Invoices
    # ─────────────────────────────────────────────────────────────────────────────

    def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        """Retrieve a Stripe customer. Returns None on failure."""
        try:
            return _to_dict(stripe.Customer.retrieve(customer_id, api_key=self._api_key))
        except StripeError as e:
            logger.error(f"Failed to retrieve customer {customer_id}: {e}")
            return None

    def list_invoices(self, customer_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """List a customer's invoices, newest first. Raises StripeError."""
        try:
            result = stripe.Invoice.list(api_key=self._api_key, customer=customer_id, limit=limit)
            return [_to_dict(invoice) for invoice in _to_dict(result).get("data") or []]
        except StripeError as e:
            logger.error(f"Failed to list invoices for {customer_id}: {e}")
            raise

    # ─────────────────────────────────────────────────────────────────────────────
    # Webhooks
    # ─────────────────────────────────────────────────────────────────────────────

    def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and construct a webhook event from Stripe.

        Raises ValueError if signature verification fails.
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload,
                signature,
                self._webhook_secret,
            )
            return _to_dict(event)
        except SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise ValueError("Invalid webhook signature") from None
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise ValueError("Invalid webhook payload") from None
