"""Access-token authentication and billing-role dependencies.

This module provides:
- Bearer token validation (HS256 shared secret)
- Loading the authenticated user
- The billing-role gate for checkout, cancel and portal endpoints
"""

import logging
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import ErrorCode, ForbiddenError, UnauthorizedError
from app.core.roles import can_manage_billing
from app.core.security import verify_access_token
from app.domain.user_operations import user_ops
from app.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate the bearer token and return the user it names."""
    if not credentials:
        raise UnauthorizedError()

    try:
        claims = verify_access_token(credentials.credentials)
    except ValueError as e:
        logger.info(f"Rejected access token: {e}")
        raise UnauthorizedError("Could not validate credentials") from None

    user = await user_ops.get(db, claims.id)
    if not user:
        raise UnauthorizedError("User not found")
    return user


async def require_billing_role(
    current_user: User = Depends(get_current_user),
) -> User:
    """Only property managers and admins may change the subscription."""
    if not can_manage_billing(current_user.role):
        raise ForbiddenError(
            "Only property managers and admins can manage billing",
            code=ErrorCode.ROLE_REQUIRED,
        )
    return current_user


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
BillingManager = Annotated[User, Depends(require_billing_role)]
