"""Domain models for the membership portal payments backend."""

from .auth import AuthSession, Identity
from .enums import (
    EntryStatus,
    FeePurchaseStatus,
    MembershipStatus,
    PaymentStatus,
    PaymentType,
    ProcessingResult,
    UserRole,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ActionError,
    ErrorCode,
    PortalError,
    get_user_friendly_stripe_message,
    sanitize_store_error,
)
from .fees import FeePurchase, FeeSelection, FeeType
from .member import Member, MembershipType, Show, ShowEntry
from .payment import (
    AdminPaymentDetail,
    AdminPaymentRow,
    CheckoutResult,
    CheckoutUrl,
    Payment,
    PaymentSummary,
    RefundActionResult,
    RefundSucceeded,
    payment_id_for_session,
)
from .webhook import WebhookEvent

__all__ = [
    # Auth
    "AuthSession",
    "Identity",
    # Enums
    "EntryStatus",
    "FeePurchaseStatus",
    "MembershipStatus",
    "PaymentStatus",
    "PaymentType",
    "ProcessingResult",
    "UserRole",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ActionError",
    "ErrorCode",
    "PortalError",
    "get_user_friendly_stripe_message",
    "sanitize_store_error",
    # Fees
    "FeePurchase",
    "FeeSelection",
    "FeeType",
    # Members
    "Member",
    "MembershipType",
    "Show",
    "ShowEntry",
    # Payments
    "AdminPaymentDetail",
    "AdminPaymentRow",
    "CheckoutResult",
    "CheckoutUrl",
    "Payment",
    "PaymentSummary",
    "RefundActionResult",
    "RefundSucceeded",
    "payment_id_for_session",
    # Webhooks
    "WebhookEvent",
]
