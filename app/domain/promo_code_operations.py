"""Domain operations for internal promo codes."""

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.promo_code import PromoCode


class InvalidPromoCodeError(ValueError):
    """Raised when a promo code exists but cannot be applied."""


class PromoCodeNotFoundError(InvalidPromoCodeError):
    """Raised when no promo code matches."""


def _is_expired(promo: PromoCode, now: datetime) -> bool:
    if promo.expires_at is None:
        return False
    expires_at = promo.expires_at
    # SQLite hands back naive datetimes; stored values are UTC
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return expires_at < now


class PromoCodeOperations:
    """Lookups, validation and usage counting for PromoCode model."""

    async def get_by_code(
        self,
        db: AsyncSession,
        code: str,
    ) -> PromoCode | None:
        """Get a promo code by its code (codes are stored upper-case)."""
        statement = select(PromoCode).where(PromoCode.code == code.strip().upper())
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def validate_for_plan(
        self,
        db: AsyncSession,
        code: str,
        plan: str | None = None,
    ) -> PromoCode:
        """
        Validate a promo code is redeemable for a plan.

        Returns the PromoCode if valid.
        Raises PromoCodeNotFoundError if no code matches, and
        InvalidPromoCodeError if it is inactive, expired, exhausted, or not
        applicable to the plan.
        """
        promo = await self.get_by_code(db, code)
        if not promo:
            raise PromoCodeNotFoundError(f"Invalid promo code: {code}")

        if not promo.is_active:
            raise InvalidPromoCodeError("This promo code is no longer active")

        if _is_expired(promo, datetime.now(UTC)):
            raise InvalidPromoCodeError("This promo code has expired")

        if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
            raise InvalidPromoCodeError("This promo code has reached its usage limit")

        if plan and promo.applicable_plans and plan.upper() not in promo.applicable_plans:
            raise InvalidPromoCodeError(f"This promo code is not valid for the {plan} plan")

        return promo

    async def increment_usage(
        self,
        db: AsyncSession,
        code: str,
    ) -> bool:
        """Atomically bump the usage counter. Returns False if no code matched."""
        statement = (
            update(PromoCode)
            .where(PromoCode.code == code.strip().upper())
            .values(current_uses=PromoCode.current_uses + 1)
        )
        result = await db.execute(statement.execution_options(synchronize_session="fetch"))
        await db.flush()
        return result.rowcount > 0


promo_code_ops = PromoCodeOperations()
