"""Interpret Stripe webhook events and reconcile the resulting state."""

import logging
from typing import assert_never

from sqlalchemy.ext.asyncio import AsyncSession

from app.config.plans import PlanCatalog
from app.domain.promo_code_operations import PromoCodeOperations, promo_code_ops
from app.services.billing import desired_state
from app.services.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    InvoiceSnapshot,
    SubscriptionDeleted,
    SubscriptionScheduleCreated,
    SubscriptionSnapshot,
    SubscriptionUpdated,
    UnhandledEvent,
)
from app.services.billing.owners import OwnerResolver
from app.services.billing.promo_resolver import SOURCE_INTERNAL
from app.services.billing.reconciler import SubscriptionReconciler, run_isolated_step
from app.services.billing.types import EventOutcome, ResolvedOwner, StepOutcome
from app.services.email.payment_failed import PaymentNotifier
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    One arm per handled event type.

    Each arm resolves an owner, computes the desired state and hands it to
    the reconciler. An owner that cannot be resolved is logged and skipped;
    unknown event types are acknowledged as no-ops. Status and plan are
    re-read from Stripe where the event payload may be stale.
    """

    def __init__(
        self,
        stripe_service: StripeService,
        catalog: PlanCatalog,
        owners: OwnerResolver,
        reconciler: SubscriptionReconciler,
        notifier: PaymentNotifier,
        promo_codes: PromoCodeOperations = promo_code_ops,
    ) -> None:
        self.stripe = stripe_service
        self.catalog = catalog
        self.owners = owners
        self.reconciler = reconciler
        self.notifier = notifier
        self.promo_codes = promo_codes

    async def dispatch(self, db: AsyncSession, event: BillingEvent) -> EventOutcome:
        outcome = EventOutcome(event_id=event.event_id, event_type=event.type)

        match event:
            case CheckoutCompleted():
                await self._checkout_completed(db, event, outcome)
            case SubscriptionUpdated():
                await self._subscription_updated(db, event, outcome)
            case SubscriptionDeleted():
                await self._subscription_deleted(db, event, outcome)
            case InvoicePaymentFailed():
                await self._invoice_payment_failed(db, event, outcome)
            case InvoicePaymentSucceeded():
                await self._invoice_payment_succeeded(db, event, outcome)
            case SubscriptionScheduleCreated():
                await self._schedule_created(db, event, outcome)
            case UnhandledEvent():
                logger.debug(f"Unhandled webhook event type: {event.event_type}")
            case _:
                assert_never(event)

        if outcome.failed_steps:
            logger.warning(
                f"Webhook {event.event_id} ({event.type}) had failed steps: "
                f"{[s.step for s in outcome.failed_steps]}"
            )
        return outcome

    @staticmethod
    def _unresolved(outcome: EventOutcome, what: str) -> None:
        outcome.resolved = False
        logger.warning(f"Could not resolve owner for {outcome.event_type} ({what}); skipping")

    def _refetch(self, subscription_id: str, outcome: EventOutcome) -> SubscriptionSnapshot | None:
        fetched = self.stripe.get_subscription(subscription_id)
        outcome.add(
            StepOutcome(
                step="fetch_subscription",
                ok=fetched is not None,
                detail=None if fetched is not None else f"could not retrieve {subscription_id}",
            )
        )
        return SubscriptionSnapshot.from_stripe(fetched) if fetched is not None else None

    # ─────────────────────────────────────────────────────────────────────────────
    # Arms
    # ─────────────────────────────────────────────────────────────────────────────

    async def _checkout_completed(
        self, db: AsyncSession, event: CheckoutCompleted, outcome: EventOutcome
    ) -> None:
        session = event.session
        owner = await self.owners.for_checkout(db, session)
        if owner is None:
            self._unresolved(outcome, f"session {session.id}")
            return

        subscription = session.subscription
        if subscription is None and session.subscription_id:
            subscription = self._refetch(session.subscription_id, outcome)

        desired = desired_state.from_checkout(session, subscription, self.catalog)
        outcome.extend(await self.reconciler.reconcile(db, owner.target, desired))

        metadata = session.metadata
        if metadata.promo_source == SOURCE_INTERNAL and metadata.promo_code:
            outcome.add(await self._count_promo_use(db, metadata.promo_code))

    async def _subscription_updated(
        self, db: AsyncSession, event: SubscriptionUpdated, outcome: EventOutcome
    ) -> None:
        snapshot = event.subscription
        owner = await self.owners.for_subscription(db, snapshot)
        if owner is None:
            self._unresolved(outcome, f"subscription {snapshot.id}")
            return

        current = self._refetch(snapshot.id, outcome) if snapshot.id else None
        desired = desired_state.from_subscription(current or snapshot, self.catalog)
        outcome.extend(await self.reconciler.reconcile(db, owner.target, desired))

    async def _subscription_deleted(
        self, db: AsyncSession, event: SubscriptionDeleted, outcome: EventOutcome
    ) -> None:
        snapshot = event.subscription
        owner = await self.owners.for_subscription(db, snapshot)
        if owner is None:
            self._unresolved(outcome, f"subscription {snapshot.id}")
            return

        desired = desired_state.cancelled(
            stripe_customer_id=snapshot.customer_id,
            stripe_subscription_id=snapshot.id or None,
            cancelled_at=snapshot.canceled_at,
        )
        outcome.extend(await self.reconciler.reconcile(db, owner.target, desired))

    async def _invoice_payment_failed(
        self, db: AsyncSession, event: InvoicePaymentFailed, outcome: EventOutcome
    ) -> None:
        invoice = event.invoice
        owner = await self.owners.by_stripe_ids(
            db, customer_id=invoice.customer_id, subscription_id=invoice.subscription_id
        )
        if owner is None:
            self._unresolved(outcome, f"invoice {invoice.id}")
            return

        outcome.add(await self._notify_payment_failed(owner, invoice.customer_id, invoice))

        desired = desired_state.suspended(
            stripe_customer_id=invoice.customer_id,
            stripe_subscription_id=invoice.subscription_id,
        )
        outcome.extend(await self.reconciler.reconcile(db, owner.target, desired))

    async def _invoice_payment_succeeded(
        self, db: AsyncSession, event: InvoicePaymentSucceeded, outcome: EventOutcome
    ) -> None:
        invoice = event.invoice
        owner = await self.owners.by_stripe_ids(
            db, customer_id=invoice.customer_id, subscription_id=invoice.subscription_id
        )
        if owner is None:
            self._unresolved(outcome, f"invoice {invoice.id}")
            return
        if not invoice.subscription_id:
            logger.info(f"Invoice {invoice.id} has no subscription; nothing to reconcile")
            return

        current = self._refetch(invoice.subscription_id, outcome)
        if current is None:
            return

        desired = desired_state.from_subscription(current, self.catalog)
        outcome.extend(await self.reconciler.reconcile(db, owner.target, desired))

    async def _schedule_created(
        self, db: AsyncSession, event: SubscriptionScheduleCreated, outcome: EventOutcome
    ) -> None:
        owner = await self.owners.by_stripe_ids(
            db,
            customer_id=event.customer_id,
            subscription_id=event.subscription_id,
            subscription_first=True,
        )
        if owner is None:
            self._unresolved(outcome, f"schedule {event.schedule_id}")
            return

        phase = event.next_phase()
        if phase is None:
            logger.info(f"Subscription schedule {event.schedule_id} for user {owner.user_id} has no upcoming phase")
            return

        plan = self.catalog.plan_for_price(phase.price_id)
        starts = phase.start_date.isoformat() if phase.start_date else "unknown"
        logger.info(
            f"Subscription schedule {event.schedule_id} for user {owner.user_id}: "
            f"next phase starts {starts}"
            f"{f', plan change to {plan.value}' if plan else ''}"
        )

    # ─────────────────────────────────────────────────────────────────────────────
    # Best-effort side effects
    # ─────────────────────────────────────────────────────────────────────────────

    async def _notify_payment_failed(
        self,
        owner: ResolvedOwner,
        customer_id: str | None,
        invoice: InvoiceSnapshot,
    ) -> StepOutcome:
        email = invoice.customer_email
        if not email and customer_id:
            customer = self.stripe.get_customer(customer_id)
            email = (customer or {}).get("email")
        email = email or owner.email
        if not email:
            return StepOutcome(step="notify", ok=False, detail="no email address for customer")

        sent = await self.notifier.notify_payment_failed(
            email, owner.first_name, invoice.hosted_invoice_url
        )
        return StepOutcome(step="notify", ok=sent, detail=None if sent else "delivery failed")

    async def _count_promo_use(self, db: AsyncSession, code: str) -> StepOutcome:
        async def increment() -> str:
            matched = await self.promo_codes.increment_usage(db, code)
            return f"promo {code} {'counted' if matched else 'not found'}"

        return await run_isolated_step(db, "promo_usage", increment)
