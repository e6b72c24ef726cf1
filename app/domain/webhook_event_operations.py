"""Domain operations for the Stripe webhook event ledger."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.webhook_event import StripeWebhookEvent


class WebhookEventOperations:
    """Ledger reads and writes keyed by Stripe event id."""

    async def get_by_event_id(
        self,
        db: AsyncSession,
        event_id: str,
    ) -> StripeWebhookEvent | None:
        """Get a ledger row by Stripe event id."""
        statement = select(StripeWebhookEvent).where(StripeWebhookEvent.event_id == event_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def record(
        self,
        db: AsyncSession,
        event_id: str,
        event_type: str,
        data: dict[str, Any] | None,
    ) -> StripeWebhookEvent:
        """
        Record a delivery as seen but not yet processed.

        An existing unprocessed row is refreshed with the latest type and
        payload so a retry after a partial failure starts clean.
        """
        existing = await self.get_by_event_id(db, event_id)
        if existing:
            existing.event_type = event_type
            existing.data = data
            db.add(existing)
            await db.flush()
            return existing

        ledger_row = StripeWebhookEvent(
            event_id=event_id,
            event_type=event_type,
            processed=False,
            data=data,
        )
        db.add(ledger_row)
        await db.flush()
        return ledger_row

    async def mark_processed(
        self,
        db: AsyncSession,
        event_id: str,
    ) -> StripeWebhookEvent | None:
        """Flip the processed flag. Returns None if the event was never recorded."""
        ledger_row = await self.get_by_event_id(db, event_id)
        if not ledger_row:
            return None
        ledger_row.processed = True
        ledger_row.processed_at = utcnow()
        db.add(ledger_row)
        await db.flush()
        return ledger_row


webhook_event_ops = WebhookEventOperations()
