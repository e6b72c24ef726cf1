"""Type definitions shared by the billing reconciliation components."""

import uuid as uuid_pkg
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from app.models.subscription import SubscriptionPlan, SubscriptionStatus


class AdmitDecision(str, Enum):
    """Result of checking a webhook event id against the ledger."""

    PROCEED = "proceed"
    ALREADY_PROCESSED = "already_processed"


@dataclass(frozen=True)
class AccountTarget:
    """Reconcile a single account."""

    user_id: uuid_pkg.UUID


@dataclass(frozen=True)
class OrganizationTarget:
    """
    Reconcile every member of an organization.

    When `user_id` is set (the account that started checkout), only that
    account gets a subscription record; the account state still fans out
    to every member.
    """

    org_id: uuid_pkg.UUID
    user_id: uuid_pkg.UUID | None = None


ReconcileTarget = AccountTarget | OrganizationTarget


@dataclass(frozen=True)
class ResolvedOwner:
    """Owner of a Stripe object, and how it was found."""

    user_id: uuid_pkg.UUID | None
    org_id: uuid_pkg.UUID | None
    source: str  # "metadata", "customer", "subscription", "email", "caller"
    email: str | None = None
    first_name: str | None = None

    @property
    def target(self) -> ReconcileTarget:
        if self.org_id is not None:
            return OrganizationTarget(org_id=self.org_id, user_id=self.user_id)
        if self.user_id is None:
            raise ValueError("ResolvedOwner has neither user_id nor org_id")
        return AccountTarget(user_id=self.user_id)


@dataclass(frozen=True)
class DesiredState:
    """
    State computed from the latest Stripe fact.

    None means "leave as is". clear_trial_end nulls the account's trial end;
    clear_cancelled_at nulls the record's cancellation time.
    """

    status: SubscriptionStatus
    plan: SubscriptionPlan | None = None
    clear_trial_end: bool = False
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    current_period_end: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_at_period_end: bool | None = None
    clear_cancelled_at: bool = False


@dataclass(frozen=True)
class StepOutcome:
    """Result of one best-effort side effect."""

    step: str
    ok: bool
    detail: str | None = None


@dataclass
class EventOutcome:
    """Everything that happened while handling one webhook event."""

    event_id: str
    event_type: str
    resolved: bool = True
    steps: list[StepOutcome] = field(default_factory=list)

    def add(self, outcome: StepOutcome) -> None:
        self.steps.append(outcome)

    def extend(self, outcomes: list[StepOutcome]) -> None:
        self.steps.extend(outcomes)

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [s for s in self.steps if not s.ok]

    def step(self, name: str) -> StepOutcome | None:
        """The first outcome recorded for a step name."""
        return next((s for s in self.steps if s.step == name), None)


@dataclass(frozen=True)
class PromoResolution:
    """A promo code resolved to a Checkout discount."""

    code: str
    source: str  # "promotion_code", "coupon", "internal"
    discount: dict[str, str]


@dataclass(frozen=True)
class CheckoutResult:
    id: str
    url: str


@dataclass(frozen=True)
class ConfirmResult:
    plan: SubscriptionPlan
    status: SubscriptionStatus
    steps: list[StepOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class CancelResult:
    cancel_at_period_end: bool
    cancel_at: datetime | None
    current_period_end: datetime | None
    steps: list[StepOutcome] = field(default_factory=list)
