"""Resolve which account or organization a Stripe object belongs to."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.subscription_operations import SubscriptionOperations, subscription_ops
from app.domain.user_operations import UserOperations, user_ops
from app.models.user import User
from app.services.billing.events import (
    BillingMetadata,
    CheckoutSessionSnapshot,
    SubscriptionSnapshot,
)
from app.services.billing.types import ResolvedOwner

logger = logging.getLogger(__name__)


def _from_user(user: User, source: str) -> ResolvedOwner:
    return ResolvedOwner(
        user_id=user.id,
        org_id=user.org_id,
        source=source,
        email=user.email,
        first_name=user.first_name,
    )


class OwnerResolver:
    """
    Fallback chains for locating the owner of a checkout, subscription or invoice.

    Metadata written at checkout always wins; stored subscription records
    and the checkout email are only consulted when metadata is absent.
    """

    def __init__(
        self,
        users: UserOperations = user_ops,
        subscriptions: SubscriptionOperations = subscription_ops,
    ) -> None:
        self.users = users
        self.subscriptions = subscriptions

    @staticmethod
    def from_metadata(metadata: BillingMetadata) -> ResolvedOwner | None:
        if not metadata.has_owner:
            return None
        return ResolvedOwner(user_id=metadata.user_id, org_id=metadata.org_id, source="metadata")

    async def by_stripe_ids(
        self,
        db: AsyncSession,
        *,
        customer_id: str | None = None,
        subscription_id: str | None = None,
        subscription_first: bool = False,
    ) -> ResolvedOwner | None:
        """Find the owner of a stored record by customer id, then subscription id."""
        lookups = [("customer", customer_id), ("subscription", subscription_id)]
        if subscription_first:
            lookups.reverse()

        for source, stripe_id in lookups:
            if not stripe_id:
                continue
            user = await self.subscriptions.find_owner(db, **{f"stripe_{source}_id": stripe_id})
            if user:
                logger.info(f"Resolved owner by {source} id: user={user.id}, org={user.org_id}")
                return _from_user(user, source)
        return None

    async def for_checkout(
        self,
        db: AsyncSession,
        session: CheckoutSessionSnapshot,
    ) -> ResolvedOwner | None:
        """Metadata, else a record with the session's customer id, else the checkout email."""
        owner = self.from_metadata(session.metadata)
        if owner:
            return owner

        if session.customer_id:
            logger.info(f"No owner in checkout metadata, searching by customer {session.customer_id}")
            owner = await self.by_stripe_ids(db, customer_id=session.customer_id)
            if owner:
                return owner

        if session.customer_email:
            user = await self.users.get_by_email(db, session.customer_email)
            if user:
                logger.info(f"Resolved checkout owner by email: user={user.id}")
                return _from_user(user, "email")

        return None

    async def for_subscription(
        self,
        db: AsyncSession,
        subscription: SubscriptionSnapshot,
    ) -> ResolvedOwner | None:
        """Metadata, else a record matching the customer or subscription id."""
        owner = self.from_metadata(subscription.metadata)
        if owner:
            return owner
        return await self.by_stripe_ids(
            db,
            customer_id=subscription.customer_id,
            subscription_id=subscription.id or None,
        )
