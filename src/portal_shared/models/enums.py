"""Enumeration types for membership portal data models."""

from enum import Enum


class MembershipStatus(str, Enum):
    """Lifecycle state of a member's membership."""

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class PaymentType(str, Enum):
    """What a payment was for."""

    MEMBERSHIP_DUES = "membership_dues"
    MEMBERSHIP_RENEWAL = "membership_renewal"
    ENTRY_FEES = "entry_fees"
    ADDITIONAL_FEES = "additional_fees"


class PaymentStatus(str, Enum):
    """Status of a local payment record."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class FeePurchaseStatus(str, Enum):
    """Status of one purchased fee line."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


class EntryStatus(str, Enum):
    """Status of a show entry."""

    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    """Role attribute carried by the authenticated identity."""

    MEMBER = "member"
    ADMIN = "admin"


class ProcessingResult(str, Enum):
    """Outcome of handling one webhook delivery."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    ERROR = "error"
