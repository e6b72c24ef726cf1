"""Plan configuration - pricing for each tier and the Stripe price catalog."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from app.models.subscription import SubscriptionPlan

if TYPE_CHECKING:
    from app.config.settings import Settings


@dataclass(frozen=True)
class PlanConfig:
    """Configuration for a subscription plan tier."""

    plan: SubscriptionPlan
    display_name: str
    price_monthly: int  # Monthly price in cents
    is_paid: bool


PLANS: dict[SubscriptionPlan, PlanConfig] = {
    SubscriptionPlan.FREE_TRIAL: PlanConfig(
        plan=SubscriptionPlan.FREE_TRIAL,
        display_name="Free Trial",
        price_monthly=0,
        is_paid=False,
    ),
    SubscriptionPlan.BASIC: PlanConfig(
        plan=SubscriptionPlan.BASIC,
        display_name="Basic",
        price_monthly=2900,  # $29/mo
        is_paid=True,
    ),
    SubscriptionPlan.PROFESSIONAL: PlanConfig(
        plan=SubscriptionPlan.PROFESSIONAL,
        display_name="Professional",
        price_monthly=7900,  # $79/mo
        is_paid=True,
    ),
    SubscriptionPlan.ENTERPRISE: PlanConfig(
        plan=SubscriptionPlan.ENTERPRISE,
        display_name="Enterprise",
        price_monthly=14900,  # $149/mo
        is_paid=True,
    ),
}

# Legacy plan names still sent by older clients
LEGACY_PLAN_MAP: dict[str, SubscriptionPlan] = {
    "STARTER": SubscriptionPlan.BASIC,
}


class AddOnType(str, Enum):
    """Optional checkout add-ons, priced per unit."""

    EXTRA_PROPERTIES = "extraProperties"
    EXTRA_TEAM_MEMBERS = "extraTeamMembers"
    EXTRA_STORAGE = "extraStorage"
    EXTRA_AUTOMATION = "extraAutomation"


def get_plan(plan: str | SubscriptionPlan) -> PlanConfig:
    """
    Get plan configuration by plan name.

    Handles legacy plan names. Defaults to BASIC for unknown names.
    """
    value = str(plan.value if isinstance(plan, SubscriptionPlan) else plan).upper()
    if value in LEGACY_PLAN_MAP:
        return PLANS[LEGACY_PLAN_MAP[value]]
    try:
        return PLANS[SubscriptionPlan(value)]
    except ValueError:
        return PLANS[SubscriptionPlan.BASIC]


@dataclass(frozen=True)
class PlanCatalog:
    """
    Bidirectional lookup between internal plans and Stripe price IDs.

    Pure lookup, built once from settings. A paid plan without a configured
    price is treated as unknown.
    """

    price_ids: dict[SubscriptionPlan, str] = field(default_factory=dict)
    addon_price_ids: dict[AddOnType, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PlanCatalog":
        return cls(
            price_ids={
                SubscriptionPlan.BASIC: settings.stripe_price_id_basic,
                SubscriptionPlan.PROFESSIONAL: settings.stripe_price_id_professional,
                SubscriptionPlan.ENTERPRISE: settings.stripe_price_id_enterprise,
            },
            addon_price_ids={
                AddOnType.EXTRA_PROPERTIES: settings.stripe_addon_extra_properties,
                AddOnType.EXTRA_TEAM_MEMBERS: settings.stripe_addon_extra_team_members,
                AddOnType.EXTRA_STORAGE: settings.stripe_addon_extra_storage,
                AddOnType.EXTRA_AUTOMATION: settings.stripe_addon_extra_automation,
            },
        )

    def normalise_plan(self, value: str | None) -> SubscriptionPlan | None:
        """
        Normalise a client-supplied plan name.

        Case-insensitive. STARTER is accepted as BASIC. FREE_TRIAL is always
        valid; paid plans are only valid when a price is configured.
        """
        if not value:
            return None
        key = str(value).strip().upper()
        if key in LEGACY_PLAN_MAP:
            plan = LEGACY_PLAN_MAP[key]
        else:
            try:
                plan = SubscriptionPlan(key)
            except ValueError:
                return None
        if plan == SubscriptionPlan.FREE_TRIAL:
            return plan
        return plan if self.price_ids.get(plan) else None

    def price_id_for(self, plan: SubscriptionPlan | str) -> str | None:
        """Get the Stripe price ID for a plan, or None if unpriced."""
        normalised = self.normalise_plan(plan.value if isinstance(plan, SubscriptionPlan) else plan)
        if normalised is None:
            return None
        return self.price_ids.get(normalised) or None

    def plan_for_price(
        self,
        price_id: str | None,
        fallback: str | None = None,
    ) -> SubscriptionPlan | None:
        """Reverse lookup from a Stripe price ID, falling back to a declared plan name."""
        if price_id:
            for plan, configured in self.price_ids.items():
                if configured and configured == price_id:
                    return plan
        return self.normalise_plan(fallback)

    def addon_price_id(self, addon_type: str | None) -> str | None:
        """Get the Stripe price ID for an add-on type; unknown types return None."""
        if not addon_type:
            return None
        try:
            addon = AddOnType(addon_type)
        except ValueError:
            return None
        return self.addon_price_ids.get(addon) or None
