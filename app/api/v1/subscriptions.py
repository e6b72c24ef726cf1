"""Read-only access to the caller's subscription records."""

from fastapi import APIRouter

from app.api.deps import CurrentUser, DbSession
from app.core.exceptions import NotFoundError
from app.domain.subscription_operations import subscription_ops
from app.models.subscription import SubscriptionStatus
from app.schemas.subscriptions import SubscriptionRecord

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("", response_model=list[SubscriptionRecord])
async def list_subscriptions(
    db: DbSession,
    current_user: CurrentUser,
) -> list[SubscriptionRecord]:
    """All of the caller's subscription records, newest first."""
    records = await subscription_ops.list_for_user(db, current_user.id)
    return [SubscriptionRecord.model_validate(record) for record in records]


@router.get("/current", response_model=SubscriptionRecord)
async def get_current_subscription(
    db: DbSession,
    current_user: CurrentUser,
) -> SubscriptionRecord:
    """The caller's most recent ACTIVE record."""
    record = await subscription_ops.get_latest_for_user(
        db, current_user.id, statuses=[SubscriptionStatus.ACTIVE.value]
    )
    if not record:
        raise NotFoundError("Active subscription")
    return SubscriptionRecord.model_validate(record)
