"""Domain operations for Subscription model."""

import logging
import uuid as uuid_pkg
from collections.abc import Iterable
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.subscription import Subscription
from app.models.user import User

logger = logging.getLogger(__name__)

# Columns the conflict target identifies; never overwritten on upsert
_UPSERT_KEYS = ("user_id", "stripe_subscription_id")


class SubscriptionOperations:
    """CRUD operations for Subscription model."""

    async def get(
        self,
        db: AsyncSession,
        id: uuid_pkg.UUID,
    ) -> Subscription | None:
        """Get a subscription by ID."""
        statement = select(Subscription).where(Subscription.id == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_stripe_customer(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
    ) -> Subscription | None:
        """Get the most recent subscription for a Stripe customer ID."""
        statement = (
            select(Subscription)
            .where(Subscription.stripe_customer_id == stripe_customer_id)
            .order_by(Subscription.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
    ) -> list[Subscription]:
        """All subscription records for an account, newest first."""
        statement = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def get_latest_for_user(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        *,
        statuses: Iterable[str] | None = None,
        require_subscription_id: bool = False,
        require_customer_id: bool = False,
    ) -> Subscription | None:
        """Get the account's most recent record, optionally filtered."""
        statement = select(Subscription).where(Subscription.user_id == user_id)
        if statuses is not None:
            statement = statement.where(Subscription.status.in_(list(statuses)))  # type: ignore[attr-defined]
        if require_subscription_id:
            statement = statement.where(Subscription.stripe_subscription_id.is_not(None))  # type: ignore[union-attr]
        if require_customer_id:
            statement = statement.where(Subscription.stripe_customer_id.is_not(None))  # type: ignore[union-attr]
        statement = statement.order_by(Subscription.created_at.desc()).limit(1)  # type: ignore[attr-defined]
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def find_owner(
        self,
        db: AsyncSession,
        *,
        stripe_customer_id: str | None = None,
        stripe_subscription_id: str | None = None,
    ) -> User | None:
        """
        Find the account that owns a record matching either Stripe ID.

        Returns None when neither ID is given or nothing matches.
        """
        conditions = []
        if stripe_customer_id:
            conditions.append(Subscription.stripe_customer_id == stripe_customer_id)
        if stripe_subscription_id:
            conditions.append(Subscription.stripe_subscription_id == stripe_subscription_id)
        if not conditions:
            return None

        statement = (
            select(User)
            .join(Subscription, Subscription.user_id == User.id)
            .where(or_(*conditions))
            .order_by(Subscription.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def find_current(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        *,
        stripe_subscription_id: str | None = None,
        stripe_customer_id: str | None = None,
    ) -> Subscription | None:
        """
        Locate the account's "current" record for the Stripe IDs in play.

        Matches on subscription ID first, then customer ID. Only when
        neither ID is known does it fall back to the most recent record.
        """
        if stripe_subscription_id:
            record = await self._latest_where(
                db, user_id, Subscription.stripe_subscription_id == stripe_subscription_id
            )
            if record:
                return record
        if stripe_customer_id:
            record = await self._latest_where(
                db, user_id, Subscription.stripe_customer_id == stripe_customer_id
            )
            if record:
                return record
        if not stripe_subscription_id and not stripe_customer_id:
            return await self.get_latest_for_user(db, user_id)
        return None

    async def _latest_where(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        condition: Any,
    ) -> Subscription | None:
        statement = (
            select(Subscription)
            .where(Subscription.user_id == user_id, condition)
            .order_by(Subscription.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def update(
        self,
        db: AsyncSession,
        subscription: Subscription,
        updates: dict[str, Any],
        clear: tuple[str, ...] = (),
    ) -> Subscription:
        """Update a subscription. None values are skipped; fields in clear are nulled."""
        for field, value in updates.items():
            if value is not None:
                setattr(subscription, field, value)
        for field in clear:
            setattr(subscription, field, None)
        subscription.updated_at = utcnow()
        db.add(subscription)
        await db.flush()
        await db.refresh(subscription)
        return subscription

    async def create(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        values: dict[str, Any],
    ) -> Subscription:
        """Insert a new record. None values fall back to column defaults."""
        subscription = Subscription(
            user_id=user_id,
            **{k: v for k, v in values.items() if v is not None},
        )
        db.add(subscription)
        await db.flush()
        await db.refresh(subscription)
        logger.info(f"Created subscription {subscription.id} for user {user_id}")
        return subscription

    async def upsert_by_stripe_subscription(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        stripe_subscription_id: str,
        values: dict[str, Any],
        clear: tuple[str, ...] = (),
    ) -> Subscription:
        """
        Create or update the account's record for a Stripe subscription.

        Uses INSERT ... ON CONFLICT (user_id, stripe_subscription_id) DO UPDATE,
        so two concurrent deliveries for the same new subscription converge
        on one row. Only non-None values are written on conflict;
        fields in clear are nulled.
        """
        now = utcnow()
        provided = {
            k: v for k, v in values.items() if v is not None and k not in _UPSERT_KEYS
        }
        insert_values = {
            "plan_id": "BASIC",
            "plan_name": "BASIC",
            "status": "PENDING",
            "cancel_at_period_end": False,
            **provided,
            "id": uuid_pkg.uuid4(),
            "user_id": user_id,
            "stripe_subscription_id": stripe_subscription_id,
            "created_at": now,
            "updated_at": now,
        }

        insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert
        stmt = insert(Subscription).values(**insert_values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_UPSERT_KEYS),
            set_={**provided, **{field: None for field in clear}, "updated_at": now},
        ).returning(Subscription)

        result = await db.scalars(stmt, execution_options={"populate_existing": True})
        subscription = result.one()
        await db.flush()
        logger.info(
            f"Upserted subscription {subscription.id} for user {user_id} "
            f"({stripe_subscription_id})"
        )
        return subscription


subscription_ops = SubscriptionOperations()
