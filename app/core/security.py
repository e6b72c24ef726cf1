"""Security utilities for access token validation."""

import uuid as uuid_pkg
from dataclasses import dataclass

from jose import JWTError, jwt

from app.config import settings


@dataclass(frozen=True)
class TokenClaims:
    """Identity asserted by a verified access token."""

    id: uuid_pkg.UUID
    org_id: uuid_pkg.UUID | None = None


def verify_access_token(token: str, secret: str | None = None) -> TokenClaims:
    """Verify an HS256 access token and return its claims.

    Raises ValueError if the token is invalid, expired, or missing an id.
    """
    key = secret if secret is not None else settings.jwt_secret
    if not key:
        raise ValueError("Token verification is not configured")

    try:
        payload = jwt.decode(token, key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise ValueError("Invalid access token") from e

    raw_id = payload.get("id") or payload.get("sub")
    if not raw_id:
        raise ValueError("Access token has no subject")

    raw_org = payload.get("orgId") or payload.get("org_id")
    return TokenClaims(
        id=uuid_pkg.UUID(str(raw_id)),
        org_id=uuid_pkg.UUID(str(raw_org)) if raw_org else None,
    )
