"""Standard error codes for portal actions.

Every user-facing action returns either its success payload or an ActionError
carrying one of the fixed messages below. Raw store or gateway error text is
never copied into an ActionError.
"""

import re
from enum import Enum
from typing import Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes for checkout, refund and webhook flows."""

    # Selection / validation errors
    SELECTION_REQUIRED = "ERR_001"
    INVALID_SELECTION = "ERR_002"
    PROFILE_UNAVAILABLE = "ERR_003"
    NOT_AVAILABLE = "ERR_004"
    MIXED_SHOWS = "ERR_005"
    NO_PAYMENT_REQUIRED = "ERR_006"
    INVALID_QUANTITY = "ERR_007"
    QUANTITY_LIMIT = "ERR_008"

    # Authentication / authorization
    SIGN_IN_REQUIRED = "ERR_AUTH_001"
    FORBIDDEN = "ERR_AUTH_002"

    # Payment lifecycle
    CHECKOUT_FAILED = "ERR_PAY_001"
    PAYMENT_NOT_FOUND = "ERR_PAY_002"
    PAYMENT_NOT_COMPLETED = "ERR_PAY_003"
    PAYMENT_INTENT_MISSING = "ERR_PAY_004"
    ALREADY_REFUNDED = "ERR_PAY_005"
    REFUND_FAILED = "ERR_PAY_006"

    # Stripe webhook
    INVALID_WEBHOOK_SIGNATURE = "ERR_STRIPE_001"
    WEBHOOK_NOT_CONFIGURED = "ERR_STRIPE_002"

    # Record store
    STORE_UNAVAILABLE = "ERR_STORE_001"
    STORE_CONNECTION = "ERR_STORE_002"
    STORE_DUPLICATE = "ERR_STORE_003"

    UNEXPECTED = "ERR_INTERNAL"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.SELECTION_REQUIRED: "Please make a selection before continuing.",
    ErrorCode.INVALID_SELECTION: "Invalid selection provided.",
    ErrorCode.PROFILE_UNAVAILABLE: "Unable to load your profile. Please try again.",
    ErrorCode.NOT_AVAILABLE: "This selection is not available.",
    ErrorCode.MIXED_SHOWS: "All entries must be for the same show.",
    ErrorCode.NO_PAYMENT_REQUIRED: "This selection does not require payment.",
    ErrorCode.INVALID_QUANTITY: "Each item must have a quantity of at least 1.",
    ErrorCode.QUANTITY_LIMIT: "The quantity requested exceeds the per-order limit for this item.",
    ErrorCode.SIGN_IN_REQUIRED: "You must be signed in to proceed.",
    ErrorCode.FORBIDDEN: "You are not authorized to perform this action.",
    ErrorCode.CHECKOUT_FAILED: "Unable to start checkout. Please try again.",
    ErrorCode.PAYMENT_NOT_FOUND: "Payment not found.",
    ErrorCode.PAYMENT_NOT_COMPLETED: "Only completed payments can be refunded.",
    ErrorCode.PAYMENT_INTENT_MISSING: "This payment has no charge to refund.",
    ErrorCode.ALREADY_REFUNDED: "This payment has already been refunded.",
    ErrorCode.REFUND_FAILED: "Unable to process refund. Please try again.",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Webhook signature verification failed",
    ErrorCode.WEBHOOK_NOT_CONFIGURED: "Webhook secret not configured",
    ErrorCode.STORE_UNAVAILABLE: "Unable to process request. Please try again.",
    ErrorCode.STORE_CONNECTION: "Unable to connect to database. Please try again.",
    ErrorCode.STORE_DUPLICATE: "This record already exists.",
    ErrorCode.UNEXPECTED: "An unexpected error occurred. Please try again.",
}

ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.SELECTION_REQUIRED: "Choose a membership type, an entry or a fee item",
    ErrorCode.INVALID_SELECTION: "Refresh the page and select again",
    ErrorCode.PROFILE_UNAVAILABLE: "Complete your member profile and retry",
    ErrorCode.NOT_AVAILABLE: "Refresh the page to see what is currently available",
    ErrorCode.MIXED_SHOWS: "Pay for each show's entries separately",
    ErrorCode.NO_PAYMENT_REQUIRED: "No checkout is needed for this selection",
    ErrorCode.INVALID_QUANTITY: "Enter a quantity of 1 or more",
    ErrorCode.QUANTITY_LIMIT: "Lower the quantity and try again",
    ErrorCode.SIGN_IN_REQUIRED: "Sign in and try again",
    ErrorCode.FORBIDDEN: "Sign in with an administrator account",
    ErrorCode.CHECKOUT_FAILED: "Try again in a moment",
    ErrorCode.PAYMENT_NOT_FOUND: "Verify the payment ID",
    ErrorCode.PAYMENT_NOT_COMPLETED: "Wait for the payment to complete",
    ErrorCode.PAYMENT_INTENT_MISSING: "Check the payment in the Stripe dashboard",
    ErrorCode.ALREADY_REFUNDED: "No further action is needed",
    ErrorCode.REFUND_FAILED: "Try again or refund from the Stripe dashboard",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.WEBHOOK_NOT_CONFIGURED: "Set STRIPE_WEBHOOK_SECRET for this deployment",
    ErrorCode.STORE_UNAVAILABLE: "Try again in a moment",
    ErrorCode.STORE_CONNECTION: "Try again in a moment",
    ErrorCode.STORE_DUPLICATE: "Refresh the page",
    ErrorCode.UNEXPECTED: "Try again later or contact support",
}


class ActionError(BaseModel):
    """Error half of every action's discriminated result."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    error: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ActionError":
        """Create an ActionError with the fixed message and recovery hint."""
        return cls(
            error_code=code,
            error=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class PortalError(Exception):
    """Raised at the HTTP boundary and converted to a JSON error response."""

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    @classmethod
    def from_action_error(cls, error: ActionError) -> "PortalError":
        return cls(code=error.error_code, details=error.details)

    def to_action_error(self) -> ActionError:
        return ActionError.from_code(self.code, self.details)


_NETWORK_PATTERN = re.compile(r"timeout|timed out|connection|network", re.IGNORECASE)

_DUPLICATE_CODES = {"ConditionalCheckFailedException", "TransactionCanceledException"}


def sanitize_store_error(exc: Exception) -> ErrorCode:
    """Map a record-store exception to a user-safe error category.

    Only the broad category is distinguished: duplicate key, network/timeout,
    request-layer failure, or unexpected.
    """
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return ErrorCode.STORE_CONNECTION
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _DUPLICATE_CODES:
            return ErrorCode.STORE_DUPLICATE
        if _NETWORK_PATTERN.search(str(exc)):
            return ErrorCode.STORE_CONNECTION
        return ErrorCode.STORE_UNAVAILABLE
    if isinstance(exc, BotoCoreError) or _NETWORK_PATTERN.search(str(exc)):
        return ErrorCode.STORE_CONNECTION
    return ErrorCode.UNEXPECTED


# Stripe error code to user-friendly message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    "card_declined": "Your card was declined. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "incorrect_cvc": "The security code (CVC) is incorrect. Please check and try again.",
    "incorrect_number": "The card number is incorrect. Please check and try again.",
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "generic_decline": "Your card was declined. Please try a different card.",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Payment could not be processed. Please try again.",
) -> str:
    """Get a user-safe message for a Stripe decline code.

    Used for the failure reason stored on a failed Payment.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message
