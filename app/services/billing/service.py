"""Billing facade: wires the reconciliation components and runs webhooks."""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.plans import PlanCatalog
from app.config.settings import Settings
from app.core.exceptions import PaymentsNotConfiguredError, WebhookSignatureError
from app.services.billing.checkout import CheckoutInitiator
from app.services.billing.confirmation import BillingActions
from app.services.billing.dispatcher import EventDispatcher
from app.services.billing.events import parse_event
from app.services.billing.idempotency import IdempotencyGuard
from app.services.billing.owners import OwnerResolver
from app.services.billing.promo_resolver import PromoResolver
from app.services.billing.reconciler import SubscriptionReconciler
from app.services.billing.types import AdmitDecision, EventOutcome
from app.services.email.payment_failed import PaymentNotifier
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_DUPLICATE = "duplicate"


@dataclass(frozen=True)
class WebhookResult:
    status: str
    outcome: EventOutcome | None = None


class BillingService:
    """
    One instance per process, stored on `app.state.billing`.

    Holds the Stripe client and the plan catalog and hands them to each
    component, so tests can build a service around a Stripe double.
    """

    def __init__(
        self,
        stripe_service: StripeService,
        catalog: PlanCatalog,
        notifier: PaymentNotifier | None = None,
    ) -> None:
        self.stripe = stripe_service
        self.catalog = catalog
        self.owners = OwnerResolver()
        self.reconciler = SubscriptionReconciler()
        self.guard = IdempotencyGuard()
        self.checkout = CheckoutInitiator(stripe_service, catalog, PromoResolver(stripe_service))
        self.actions = BillingActions(stripe_service, catalog, self.owners, self.reconciler)
        self.dispatcher = EventDispatcher(
            stripe_service,
            catalog,
            self.owners,
            self.reconciler,
            notifier or PaymentNotifier(),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "BillingService":
        return cls(
            StripeService(settings.stripe_secret_key, settings.stripe_webhook_secret),
            PlanCatalog.from_settings(settings),
        )

    @property
    def enabled(self) -> bool:
        return self.stripe.enabled

    async def process_webhook(
        self,
        db: AsyncSession,
        payload: bytes,
        signature: str,
    ) -> WebhookResult:
        """
        Verify, deduplicate and dispatch one Stripe webhook delivery.

        The ledger row is committed before dispatch, and the event is only
        marked processed after the dispatcher's writes are committed. An
        exception from dispatch propagates so Stripe retries the delivery;
        failing to record the processed mark does not.
        """
        if not self.stripe.webhooks_enabled:
            raise PaymentsNotConfiguredError("Stripe webhooks are not configured")

        try:
            raw_event = self.stripe.construct_webhook_event(payload, signature)
        except ValueError as e:
            raise WebhookSignatureError(str(e)) from e

        event = parse_event(raw_event)
        logger.info(f"Received Stripe webhook {event.event_id}: {event.type}")

        decision = await self.guard.admit(db, event.event_id, event.type, raw_event)
        if decision == AdmitDecision.ALREADY_PROCESSED:
            return WebhookResult(status=STATUS_DUPLICATE)
        await db.commit()

        outcome = await self.dispatcher.dispatch(db, event)
        await db.commit()

        await self.guard.mark_processed(db, event.event_id)
        try:
            await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to commit processed mark for {event.event_id}: {e}")
            await db.rollback()

        logger.info(
            f"Processed webhook {event.event_id}: resolved={outcome.resolved}, "
            f"steps={[(s.step, s.ok) for s in outcome.steps]}"
        )
        return WebhookResult(status=STATUS_PROCESSED, outcome=outcome)
