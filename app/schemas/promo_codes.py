"""Schemas for promo code validation."""

import uuid as uuid_pkg

from app.schemas.base import CamelModel


class PromoCodeValidateRequest(CamelModel):
    code: str | None = None
    plan: str | None = None


class PromoCodeSummary(CamelModel):
    id: uuid_pkg.UUID
    code: str
    description: str | None
    discount_type: str
    discount_value: float
    discount_amount: float  # dollars off the plan's monthly price


class PromoCodeValidateResponse(CamelModel):
    valid: bool = True
    promo_code: PromoCodeSummary
