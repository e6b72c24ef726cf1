"""Promo code endpoints."""

import logging

from fastapi import APIRouter

from app.api.deps import CurrentUser, DbSession
from app.config.plans import LEGACY_PLAN_MAP, PLANS
from app.core.exceptions import ErrorCode, NotFoundError, ValidationError
from app.domain.promo_code_operations import (
    InvalidPromoCodeError,
    PromoCodeNotFoundError,
    promo_code_ops,
)
from app.models.promo_code import DiscountType, PromoCode
from app.models.subscription import SubscriptionPlan
from app.schemas.promo_codes import (
    PromoCodeSummary,
    PromoCodeValidateRequest,
    PromoCodeValidateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])


def discount_amount(promo: PromoCode, plan: str | None) -> float:
    """Dollars off one month of `plan`. Percentages of an unknown plan are worth 0."""
    if promo.discount_type != DiscountType.PERCENTAGE.value:
        return round(float(promo.discount_value), 2)

    key = (plan or "").strip().upper()
    try:
        tier = LEGACY_PLAN_MAP.get(key) or SubscriptionPlan(key)
    except ValueError:
        return 0.0
    price_dollars = PLANS[tier].price_monthly / 100
    return round(price_dollars * float(promo.discount_value) / 100, 2)


@router.post("/validate", response_model=PromoCodeValidateResponse)
async def validate_promo_code(
    request: PromoCodeValidateRequest,
    db: DbSession,
    current_user: CurrentUser,
) -> PromoCodeValidateResponse:
    """
    Check whether an internal promo code can be used for a plan.

    404 if no such code, 400 if it is inactive, expired, used up or not
    valid for the plan.
    """
    if not request.code or not request.code.strip():
        raise ValidationError("Promo code is required", code=ErrorCode.MISSING_FIELD)

    try:
        promo = await promo_code_ops.validate_for_plan(db, request.code, request.plan)
    except PromoCodeNotFoundError:
        raise NotFoundError("Promo code") from None
    except InvalidPromoCodeError as e:
        raise ValidationError(str(e)) from None

    logger.info(f"Promo code {promo.code} validated for user {current_user.id}")
    return PromoCodeValidateResponse(
        promo_code=PromoCodeSummary(
            id=promo.id,
            code=promo.code,
            description=promo.description,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
            discount_amount=discount_amount(promo, request.plan),
        )
    )
