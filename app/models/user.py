import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, Relationship

from app.models.base import TimestampMixin, UUIDMixin
from app.models.subscription import SubscriptionPlan, SubscriptionStatus

if TYPE_CHECKING:
    from app.models.subscription import Subscription


class UserRole(str, Enum):
    """Account roles issued by the auth service."""

    ADMIN = "ADMIN"
    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    OWNER = "OWNER"
    TECHNICIAN = "TECHNICIAN"
    TENANT = "TENANT"


class User(UUIDMixin, TimestampMixin, table=True):
    """
    User model - an account that can hold a billing relationship.

    Billing fields (subscription_status, subscription_plan, trial_end_date)
    are written only by the subscription reconciler. Members of the same
    organization share org_id and receive organization-level billing changes
    together.
    """

    __tablename__ = "users"

    email: str = Field(max_length=255, unique=True, index=True)
    first_name: str | None = Field(default=None, max_length=100)
    role: str = Field(
        default=UserRole.PROPERTY_MANAGER.value,
        sa_column=Column(String(32), nullable=False, server_default=UserRole.PROPERTY_MANAGER.value),
    )
    org_id: uuid_pkg.UUID | None = Field(default=None, nullable=True, index=True)

    # Billing state
    subscription_status: str = Field(
        default=SubscriptionStatus.TRIAL.value,
        sa_column=Column(String(20), nullable=False, server_default=SubscriptionStatus.TRIAL.value),
    )
    subscription_plan: str = Field(
        default=SubscriptionPlan.FREE_TRIAL.value,
        sa_column=Column(
            String(20), nullable=False, server_default=SubscriptionPlan.FREE_TRIAL.value
        ),
    )
    trial_end_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    # Relationships
    subscriptions: list["Subscription"] = Relationship(back_populates="user")
