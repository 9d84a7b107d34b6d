"""
Error taxonomy for the checkout and settlement flows.

Every failure a caller can observe is a MarketplaceError subclass; main.py renders
them into the {error, code, message?} envelope with the matching HTTP status.
"""

from typing import Optional


class MarketplaceError(Exception):
    """Base error: carries the HTTP status, a stable code and a short title."""

    status_code = 400
    code = "BAD_REQUEST"
    error = "Bad request"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        error: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message or error or self.error)
        self.message = message
        if code:
            self.code = code
        if error:
            self.error = error
        # internal detail, only rendered in development mode
        self.detail = detail

    def to_dict(self, dev_mode: bool = False) -> dict:
        body = {"error": self.error, "code": self.code}
        if self.message:
            body["message"] = self.message
        if dev_mode and self.detail:
            body["detail"] = self.detail
        return body


class InvalidRequestError(MarketplaceError):
    status_code = 400
    code = "VALIDATION_ERROR"
    error = "Validation error"


class AuthenticationRequiredError(MarketplaceError):
    status_code = 401
    code = "AUTH_REQUIRED"
    error = "Authentication required"


class PermissionDeniedError(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"
    error = "Forbidden"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"
    error = "Not found"


class StateConflictError(MarketplaceError):
    status_code = 400
    code = "STATE_CONFLICT"
    error = "Not available"


class ClaimConflictError(StateConflictError):
    status_code = 409
    code = "LISTING_NO_LONGER_CLAIMABLE"
    error = "Listing no longer claimable"


class PayoutNotReadyError(StateConflictError):
    """A beneficiary has no payout account yet; the item is temporarily unavailable."""

    code = "STRIPE_NOT_CONNECTED"
    error = "Temporarily unavailable"


class UpstreamError(MarketplaceError):
    status_code = 400
    code = "PAYMENT_PROCESSOR_ERROR"
    error = "Payment processor error"


class ConfigurationError(MarketplaceError):
    """A required server-side setting is missing."""

    status_code = 500
    code = "NOT_CONFIGURED"
    error = "Service not configured"
