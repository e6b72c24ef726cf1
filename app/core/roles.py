"""Role constants and utilities for billing permissions."""

from app.models.user import UserRole

# Roles allowed to start checkout, cancel, and open the billing portal
BILLING_ROLES: frozenset[str] = frozenset(
    {
        UserRole.PROPERTY_MANAGER.value,
        UserRole.ADMIN.value,
    }
)


def can_manage_billing(role: str | None) -> bool:
    """Check if a role may manage the organization's subscription."""
    return (role or "").upper() in BILLING_ROLES
