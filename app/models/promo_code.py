"""Promo code model - internally managed checkout discounts."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDMixin


class DiscountType(str, Enum):
    """How a promo code's discount_value is interpreted."""

    FIXED = "FIXED"  # discount_value in dollars
    PERCENTAGE = "PERCENTAGE"  # discount_value in percent (0-100)


class PromoCode(UUIDMixin, TimestampMixin, table=True):
    """
    Platform-managed promo codes.

    Created by platform admins directly in the DB. When a code is used at
    checkout, a Stripe coupon with the same id is created on demand.
    An empty applicable_plans list means the code applies to every plan.
    """

    __tablename__ = "promo_codes"

    code: str = Field(
        sa_column=Column(String(50), nullable=False, unique=True, index=True),
    )
    description: str | None = Field(default=None, max_length=500, nullable=True)
    discount_type: str = Field(
        default=DiscountType.PERCENTAGE.value,
        sa_column=Column(String(20), nullable=False),
    )
    discount_value: float = Field(nullable=False)
    applicable_plans: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False),
    )
    max_uses: int | None = Field(default=None, nullable=True)
    current_uses: int = Field(default=0, nullable=False)
    is_active: bool = Field(default=True, nullable=False)
    expires_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
