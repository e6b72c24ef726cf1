"""Typed views of the Stripe webhook events the billing engine handles.

Each handled event type parses into its own frozen dataclass, so the
dispatcher can match exhaustively instead of poking at `data.object`.
Both the legacy and the current Stripe payload shapes are accepted:
invoices may carry the subscription id at the top level or under
`parent.subscription_details`, and the period end may live on the
subscription or on its items.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
SUBSCRIPTION_SCHEDULE_CREATED = "subscription_schedule.created"
LEGACY_SUBSCRIPTION_SCHEDULE_CREATED = "customer.subscription.schedule.created"


# ─────────────────────────────────────────────────────────────────────────────
# Field helpers
# ─────────────────────────────────────────────────────────────────────────────


def _id(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if not value:
        return None
    if isinstance(value, dict):
        return value.get("id") or None
    return str(value)


def _timestamp(value: Any) -> datetime | None:
    """Unix seconds to an aware UTC datetime."""
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def _uuid(value: Any) -> uuid_pkg.UUID | None:
    if not value:
        return None
    try:
        return uuid_pkg.UUID(str(value))
    except ValueError:
        logger.warning(f"Ignoring malformed id in Stripe metadata: {value!r}")
        return None


def _get(obj: dict[str, Any] | None, *path: str) -> Any:
    current: Any = obj
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = _get(subscription, "items", "data") or []
    return items[0] if items and isinstance(items[0], dict) else {}


# ─────────────────────────────────────────────────────────────────────────────
# Snapshots of Stripe objects
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BillingMetadata:
    """Metadata written onto checkout sessions and subscriptions at checkout."""

    user_id: uuid_pkg.UUID | None = None
    org_id: uuid_pkg.UUID | None = None
    plan: str | None = None
    promo_code: str | None = None
    promo_source: str | None = None

    @classmethod
    def from_stripe(cls, metadata: dict[str, Any] | None) -> "BillingMetadata":
        metadata = metadata or {}
        return cls(
            user_id=_uuid(metadata.get("user_id") or metadata.get("userId")),
            org_id=_uuid(metadata.get("org_id") or metadata.get("orgId")),
            plan=metadata.get("plan") or None,
            promo_code=metadata.get("promo_code") or None,
            promo_source=metadata.get("promo_source") or None,
        )

    @property
    def has_owner(self) -> bool:
        return self.user_id is not None or self.org_id is not None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    id: str
    customer_id: str | None
    status: str | None
    price_id: str | None
    current_period_end: datetime | None
    canceled_at: datetime | None
    cancel_at: datetime | None
    cancel_at_period_end: bool
    metadata: BillingMetadata

    @classmethod
    def from_stripe(cls, obj: dict[str, Any]) -> "SubscriptionSnapshot":
        item = _first_item(obj)
        return cls(
            id=str(obj.get("id") or ""),
            customer_id=_id(obj.get("customer")),
            status=obj.get("status"),
            price_id=_id(item.get("price")),
            current_period_end=_timestamp(
                obj.get("current_period_end") or item.get("current_period_end")
            ),
            canceled_at=_timestamp(obj.get("canceled_at")),
            cancel_at=_timestamp(obj.get("cancel_at")),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            metadata=BillingMetadata.from_stripe(obj.get("metadata")),
        )


@dataclass(frozen=True)
class CheckoutSessionSnapshot:
    id: str
    mode: str | None
    status: str | None
    payment_status: str | None
    customer_id: str | None
    customer_email: str | None
    subscription_id: str | None
    subscription: SubscriptionSnapshot | None
    metadata: BillingMetadata

    @classmethod
    def from_stripe(cls, obj: dict[str, Any]) -> "CheckoutSessionSnapshot":
        raw_subscription = obj.get("subscription")
        return cls(
            id=str(obj.get("id") or ""),
            mode=obj.get("mode"),
            status=obj.get("status"),
            payment_status=obj.get("payment_status"),
            customer_id=_id(obj.get("customer")),
            customer_email=_get(obj, "customer_details", "email") or obj.get("customer_email"),
            subscription_id=_id(raw_subscription),
            subscription=(
                SubscriptionSnapshot.from_stripe(raw_subscription)
                if isinstance(raw_subscription, dict)
                else None
            ),
            metadata=BillingMetadata.from_stripe(obj.get("metadata")),
        )

    @property
    def is_complete(self) -> bool:
        return self.status == "complete" or self.payment_status == "paid"


@dataclass(frozen=True)
class InvoiceSnapshot:
    id: str
    customer_id: str | None
    subscription_id: str | None
    customer_email: str | None
    hosted_invoice_url: str | None

    @classmethod
    def from_stripe(cls, obj: dict[str, Any]) -> "InvoiceSnapshot":
        subscription = obj.get("subscription") or _get(
            obj, "parent", "subscription_details", "subscription"
        )
        return cls(
            id=str(obj.get("id") or ""),
            customer_id=_id(obj.get("customer")),
            subscription_id=_id(subscription),
            customer_email=obj.get("customer_email"),
            hosted_invoice_url=obj.get("hosted_invoice_url"),
        )


@dataclass(frozen=True)
class SchedulePhase:
    start_date: datetime | None
    price_id: str | None


# ─────────────────────────────────────────────────────────────────────────────
# Event variants
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckoutCompleted:
    type: ClassVar[str] = CHECKOUT_COMPLETED
    event_id: str
    session: CheckoutSessionSnapshot


@dataclass(frozen=True)
class SubscriptionUpdated:
    type: ClassVar[str] = SUBSCRIPTION_UPDATED
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    type: ClassVar[str] = SUBSCRIPTION_DELETED
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class InvoicePaymentFailed:
    type: ClassVar[str] = INVOICE_PAYMENT_FAILED
    event_id: str
    invoice: InvoiceSnapshot


@dataclass(frozen=True)
class InvoicePaymentSucceeded:
    type: ClassVar[str] = INVOICE_PAYMENT_SUCCEEDED
    event_id: str
    invoice: InvoiceSnapshot


@dataclass(frozen=True)
class SubscriptionScheduleCreated:
    type: ClassVar[str] = SUBSCRIPTION_SCHEDULE_CREATED
    event_id: str
    schedule_id: str
    customer_id: str | None
    subscription_id: str | None
    phases: tuple[SchedulePhase, ...] = field(default_factory=tuple)

    def next_phase(self, now: datetime | None = None) -> SchedulePhase | None:
        """The first phase that starts in the future."""
        now = now or datetime.now(UTC)
        for phase in self.phases:
            if phase.start_date and phase.start_date > now:
                return phase
        return None


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str

    @property
    def type(self) -> str:
        return self.event_type


BillingEvent = (
    CheckoutCompleted
    | SubscriptionUpdated
    | SubscriptionDeleted
    | InvoicePaymentFailed
    | InvoicePaymentSucceeded
    | SubscriptionScheduleCreated
    | UnhandledEvent
)


def _parse_schedule(event_id: str, obj: dict[str, Any]) -> SubscriptionScheduleCreated:
    phases = []
    for phase in obj.get("phases") or []:
        items = phase.get("items") or []
        price = items[0].get("price") if items and isinstance(items[0], dict) else None
        phases.append(SchedulePhase(start_date=_timestamp(phase.get("start_date")), price_id=_id(price)))
    return SubscriptionScheduleCreated(
        event_id=event_id,
        schedule_id=str(obj.get("id") or ""),
        customer_id=_id(obj.get("customer")),
        subscription_id=_id(obj.get("subscription")),
        phases=tuple(phases),
    )


def parse_event(event: dict[str, Any]) -> BillingEvent:
    """Turn a verified Stripe event dict into its typed variant."""
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    obj = _get(event, "data", "object")
    if not isinstance(obj, dict):
        return UnhandledEvent(event_id=event_id, event_type=event_type)

    match event_type:
        case "checkout.session.completed":
            return CheckoutCompleted(event_id, CheckoutSessionSnapshot.from_stripe(obj))
        case "customer.subscription.updated":
            return SubscriptionUpdated(event_id, SubscriptionSnapshot.from_stripe(obj))
        case "customer.subscription.deleted":
            return SubscriptionDeleted(event_id, SubscriptionSnapshot.from_stripe(obj))
        case "invoice.payment_failed":
            return InvoicePaymentFailed(event_id, InvoiceSnapshot.from_stripe(obj))
        case "invoice.payment_succeeded":
            return InvoicePaymentSucceeded(event_id, InvoiceSnapshot.from_stripe(obj))
        case "subscription_schedule.created" | "customer.subscription.schedule.created":
            return _parse_schedule(event_id, obj)
        case _:
            return UnhandledEvent(event_id=event_id, event_type=event_type)
