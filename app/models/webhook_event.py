"""Stripe webhook event ledger - one row per delivered event id."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, String, false, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.models.base import UUIDMixin, utcnow


class StripeWebhookEvent(UUIDMixin, table=True):
    """
    Idempotency ledger for Stripe webhook deliveries.

    Keyed purely by the Stripe event id so an event can be recorded before
    any account is resolved. `processed` flips to true only after the
    event's side effects have been committed.
    """

    __tablename__ = "stripe_webhook_events"

    event_id: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True, index=True),
    )
    event_type: str = Field(
        sa_column=Column(String(100), nullable=False, index=True),
    )
    processed: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": false()},
    )
    processed_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    data: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True),
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": func.now()},
    )
