"""Webhook event-id journal gating (re)processing of Stripe deliveries."""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.webhook_event_operations import WebhookEventOperations, webhook_event_ops
from app.services.billing.types import AdmitDecision

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """
    Best-effort deduplication of Stripe webhook deliveries.

    Reconciliation is idempotent on its own, so a ledger failure never
    blocks processing: it is logged and the event proceeds.
    """

    def __init__(self, ledger: WebhookEventOperations = webhook_event_ops) -> None:
        self.ledger = ledger

    async def admit(
        self,
        db: AsyncSession,
        event_id: str,
        event_type: str,
        payload: dict[str, Any] | None,
    ) -> AdmitDecision:
        """
        Decide whether an event must be processed.

        Already processed -> ALREADY_PROCESSED. Otherwise the event is
        recorded (or its unprocessed row refreshed) and PROCEED is returned.
        """
        try:
            async with db.begin_nested():
                existing = await self.ledger.get_by_event_id(db, event_id)
                if existing and existing.processed:
                    logger.info(f"Skipping duplicate webhook: {event_id}")
                    return AdmitDecision.ALREADY_PROCESSED
                await self.ledger.record(db, event_id, event_type, payload)
        except SQLAlchemyError as e:
            logger.error(f"Webhook ledger unavailable for {event_id}, processing anyway: {e}")
        return AdmitDecision.PROCEED

    async def mark_processed(self, db: AsyncSession, event_id: str) -> bool:
        """Flag the event as handled. Failures are logged, never raised."""
        try:
            async with db.begin_nested():
                ledger_row = await self.ledger.mark_processed(db, event_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark webhook {event_id} as processed: {e}")
            return False
        if ledger_row is None:
            logger.warning(f"Webhook {event_id} was never recorded; nothing to mark")
            return False
        return True
