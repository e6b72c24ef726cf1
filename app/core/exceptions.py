"""HTTP error types for the billing API.

Each error carries a machine-readable code next to the message so clients
can tell "not configured" from "not found" from "upstream rejected".
"""

from enum import Enum

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in the response detail."""

    STRIPE_NOT_CONFIGURED = "STRIPE_NOT_CONFIGURED"
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_IN_STATE = "ALREADY_IN_STATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    ROLE_REQUIRED = "ROLE_REQUIRED"
    STRIPE_ERROR = "STRIPE_ERROR"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"


class BillingHTTPError(HTTPException):
    """Base for errors that render as {"message": ..., "code": ...}."""

    def __init__(self, status_code: int, message: str, code: ErrorCode):
        self.message = message
        self.code = code
        super().__init__(
            status_code=status_code,
            detail={"message": message, "code": code.value},
        )


class PaymentsNotConfiguredError(BillingHTTPError):
    """Raised when Stripe credentials are missing."""

    def __init__(self, message: str = "Payments are not configured"):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, message, ErrorCode.STRIPE_NOT_CONFIGURED)


class ValidationError(BillingHTTPError):
    """Raised when request validation fails."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, code)


class NotFoundError(BillingHTTPError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str):
        super().__init__(status.HTTP_404_NOT_FOUND, f"{resource} not found", ErrorCode.NOT_FOUND)


class AlreadyInStateError(BillingHTTPError):
    """Raised when the requested transition has already happened."""

    def __init__(self, message: str):
        super().__init__(status.HTTP_409_CONFLICT, message, ErrorCode.ALREADY_IN_STATE)


class UnauthorizedError(BillingHTTPError):
    """Raised when the caller is not authenticated."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message, ErrorCode.UNAUTHORIZED)


class ForbiddenError(BillingHTTPError):
    """Raised when user lacks permission to access a resource."""

    def __init__(
        self,
        message: str = "Not authorized to access this resource",
        code: ErrorCode = ErrorCode.FORBIDDEN,
    ):
        super().__init__(status.HTTP_403_FORBIDDEN, message, code)


class UpstreamError(BillingHTTPError):
    """Raised when Stripe rejects a request or cannot be reached."""

    def __init__(self, message: str = "Payment provider request failed"):
        super().__init__(status.HTTP_502_BAD_GATEWAY, message, ErrorCode.STRIPE_ERROR)


class WebhookSignatureError(BillingHTTPError):
    """Raised when a webhook delivery fails signature verification."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.WEBHOOK_SIGNATURE_INVALID)
