"""Resolve a customer-entered promo code to a Stripe Checkout discount."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from app.domain.promo_code_operations import (
    InvalidPromoCodeError,
    PromoCodeOperations,
    promo_code_ops,
)
from app.models.promo_code import DiscountType, PromoCode
from app.models.subscription import SubscriptionPlan
from app.services.billing.types import PromoResolution
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

SOURCE_PROMOTION_CODE = "promotion_code"
SOURCE_COUPON = "coupon"
SOURCE_INTERNAL = "internal"


class PromoResolver:
    """
    Looks a code up in strict order, stopping at the first hit:

    1. an active Stripe promotion code with that literal code
    2. a Stripe coupon whose id or name matches
    3. an internal PromoCode valid for the plan, turned into a Stripe
       coupon with the code as its id

    An error at one source moves on to the next. If nothing resolves the
    result is None and checkout goes ahead without a discount.
    """

    def __init__(
        self,
        stripe_service: StripeService,
        promo_codes: PromoCodeOperations = promo_code_ops,
    ) -> None:
        self.stripe = stripe_service
        self.promo_codes = promo_codes

    async def resolve(
        self,
        db: AsyncSession,
        code: str | None,
        plan: SubscriptionPlan,
    ) -> PromoResolution | None:
        normalised = (code or "").strip().upper()
        if not normalised:
            return None

        try:
            promotion = self.stripe.find_promotion_code(normalised)
            if promotion:
                logger.info(f"Promo {normalised} matched Stripe promotion code {promotion['id']}")
                return PromoResolution(
                    code=normalised,
                    source=SOURCE_PROMOTION_CODE,
                    discount={"promotion_code": promotion["id"]},
                )
        except StripeError as e:
            logger.warning(f"Promotion code lookup failed for {normalised}: {e}")

        try:
            coupon = self.stripe.find_coupon(normalised)
            if coupon:
                logger.info(f"Promo {normalised} matched Stripe coupon {coupon['id']}")
                return PromoResolution(
                    code=normalised,
                    source=SOURCE_COUPON,
                    discount={"coupon": coupon["id"]},
                )
        except StripeError as e:
            logger.warning(f"Coupon lookup failed for {normalised}: {e}")

        return await self._from_internal(db, normalised, plan)

    async def _from_internal(
        self,
        db: AsyncSession,
        code: str,
        plan: SubscriptionPlan,
    ) -> PromoResolution | None:
        try:
            promo = await self.promo_codes.validate_for_plan(db, code, plan.value)
        except InvalidPromoCodeError as e:
            logger.info(f"Promo {code} not applied: {e}")
            return None
        except SQLAlchemyError as e:
            logger.error(f"Promo code lookup failed for {code}: {e}")
            return None

        try:
            coupon_id = self.stripe.get_or_create_coupon(
                code, name=promo.description or code, **_coupon_terms(promo)
            )
        except StripeError as e:
            logger.warning(f"Could not create Stripe coupon for promo {code}: {e}")
            return None

        logger.info(f"Promo {code} applied from internal promo codes as coupon {coupon_id}")
        return PromoResolution(code=code, source=SOURCE_INTERNAL, discount={"coupon": coupon_id})


def _coupon_terms(promo: PromoCode) -> dict[str, float | int]:
    if promo.discount_type == DiscountType.PERCENTAGE.value:
        return {"percent_off": float(promo.discount_value)}
    return {"amount_off": int(round(float(promo.discount_value) * 100))}
