"""API dependencies - re-exports from submodules."""

from .auth import (
    BillingManager,
    CurrentUser,
    DbSession,
    get_current_user,
    require_billing_role,
    security,
)
from .billing import Billing, get_billing_service

__all__ = [
    # Auth
    "security",
    "get_current_user",
    "require_billing_role",
    "DbSession",
    "CurrentUser",
    "BillingManager",
    # Billing
    "Billing",
    "get_billing_service",
]
