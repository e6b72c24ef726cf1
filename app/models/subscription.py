"""Subscription model - per-account record of a Stripe subscription lifecycle."""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid, false
from sqlmodel import Field, Relationship

from app.models.base import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.user import User


class SubscriptionPlan(str, Enum):
    """Available subscription plans."""

    FREE_TRIAL = "FREE_TRIAL"
    BASIC = "BASIC"  # $29/mo
    PROFESSIONAL = "PROFESSIONAL"  # $79/mo
    ENTERPRISE = "ENTERPRISE"  # $149/mo


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    PENDING = "PENDING"
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"


class Subscription(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription record - one row per Stripe subscription an account has held.

    Rows are updated in place and never deleted, so cancelled rows remain
    for invoice history. The (user_id, stripe_subscription_id) constraint
    lets webhook and confirmation paths upsert the same row without racing
    into duplicates.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "stripe_subscription_id",
            name="uq_subscriptions_user_stripe_subscription",
        ),
    )

    user_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            Uuid,
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )

    # Plan info
    plan_id: str = Field(
        default=SubscriptionPlan.BASIC.value,
        sa_column=Column(String(20), nullable=False, server_default=SubscriptionPlan.BASIC.value),
    )
    plan_name: str = Field(
        default=SubscriptionPlan.BASIC.value,
        sa_column=Column(String(50), nullable=False, server_default=SubscriptionPlan.BASIC.value),
    )
    status: str = Field(
        default=SubscriptionStatus.PENDING.value,
        sa_column=Column(String(20), nullable=False, server_default=SubscriptionStatus.PENDING.value),
    )

    # Stripe references (nullable until the first checkout completes)
    stripe_customer_id: str | None = Field(default=None, max_length=255, nullable=True, index=True)
    stripe_subscription_id: str | None = Field(
        default=None, max_length=255, nullable=True, index=True
    )

    # Billing period
    stripe_current_period_end: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    cancel_at_period_end: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": false()},
    )
    cancelled_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    # Relationships
    user: Optional["User"] = Relationship(back_populates="subscriptions")
