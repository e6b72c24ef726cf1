"""Schemas for the subscription record endpoints."""

import uuid as uuid_pkg
from datetime import datetime

from pydantic import ConfigDict

from app.schemas.base import CamelModel


class SubscriptionRecord(CamelModel):
    """One stored subscription record. Cancelled rows stay for history."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid_pkg.UUID
    plan_id: str
    plan_name: str
    status: str
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
