"""Domain operations for User billing state."""

import logging
import uuid as uuid_pkg
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.user import User

logger = logging.getLogger(__name__)


class UserOperations:
    """Lookups and billing-state writes for User model."""

    async def get(self, db: AsyncSession, id: uuid_pkg.UUID) -> User | None:
        """Get a user by ID."""
        statement = select(User).where(User.id == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_email(self, db: AsyncSession, email: str) -> User | None:
        """Get a user by email (case-insensitive)."""
        statement = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await db.execute(statement)
        return result.scalars().first()

    async def list_org_member_ids(
        self,
        db: AsyncSession,
        org_id: uuid_pkg.UUID,
    ) -> list[uuid_pkg.UUID]:
        """Get the ids of every account in an organization."""
        statement = select(User.id).where(User.org_id == org_id).order_by(User.created_at)
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def update_billing_state(
        self,
        db: AsyncSession,
        values: dict[str, Any],
        *,
        user_id: uuid_pkg.UUID | None = None,
        org_id: uuid_pkg.UUID | None = None,
    ) -> int:
        """
        Write billing fields for one account or every member of an organization.

        With both ids, the account and all of its organization's members are
        written. Issued as a single UPDATE statement. Returns the number of
        rows matched.
        """
        if user_id is None and org_id is None:
            raise ValueError("update_billing_state needs a user_id or org_id")

        statement = update(User).values(**values, updated_at=utcnow())
        if user_id is not None and org_id is not None:
            statement = statement.where(or_(User.id == user_id, User.org_id == org_id))
        elif user_id is not None:
            statement = statement.where(User.id == user_id)
        else:
            statement = statement.where(User.org_id == org_id)

        result = await db.execute(statement.execution_options(synchronize_session="fetch"))
        await db.flush()
        logger.info(
            f"Updated billing state for {'user ' + str(user_id) if user_id else 'org ' + str(org_id)}: "
            f"{result.rowcount} row(s)"
        )
        return result.rowcount


user_ops = UserOperations()
