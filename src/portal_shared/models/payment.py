"""Payment model and action results for checkout and refunds."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import PaymentStatus, PaymentType
from .errors import ActionError
from .fees import FeePurchase
from .member import ShowEntry

# Namespace for payment ids derived from checkout-session ids
PAYMENT_ID_NAMESPACE = uuid.UUID("6f1c2a9e-5b3d-4c8e-9a71-2d4f8e0b7c13")


def payment_id_for_session(session_id: str) -> str:
    """Derive the local payment ID for a Stripe Checkout Session.

    The same session always yields the same ID, so the session ID is a unique
    join key between Stripe and the payments table.
    """
    digest = uuid.uuid5(PAYMENT_ID_NAMESPACE, session_id).hex
    return f"PAY-{digest[:12].upper()}"


class Payment(BaseModel):
    """A local payment record created at checkout and reconciled by webhook.

    Amounts are stored in USD cents.
    """

    model_config = ConfigDict(strict=True)

    payment_id: str = Field(..., description="Derived from the checkout session ID")
    member_id: str = Field(..., description="Paying member")
    amount_cents: int = Field(..., ge=0, description="Amount in USD cents")
    currency: str = Field(default="usd", description="Currency code")
    payment_type: PaymentType
    membership_type_slug: str | None = Field(
        default=None, description="Set for membership dues and renewals"
    )
    description: str = Field(..., examples=["Adult Annual Membership"])
    stripe_checkout_session_id: str = Field(
        ...,
        description="Stripe Checkout Session ID (cs_xxx)",
        examples=["cs_test_abc123def456"],
    )
    stripe_payment_intent_id: str | None = Field(
        default=None,
        description="Stripe PaymentIntent ID (pi_xxx), known once paid",
        examples=["pi_3ABC123DEF456"],
    )
    status: PaymentStatus = PaymentStatus.PENDING
    failure_reason: str | None = None
    stripe_refund_id: str | None = Field(
        default=None,
        description="Stripe Refund ID (re_xxx) if refunded",
        examples=["re_3ABC123DEF456"],
    )
    refunded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CheckoutUrl(BaseModel):
    """Successful checkout: where to send the member's browser."""

    model_config = ConfigDict(strict=True)

    url: str = Field(
        ...,
        description="Stripe Checkout URL for payment redirect",
        examples=["https://checkout.stripe.com/c/pay/cs_test_abc123"],
    )


class RefundSucceeded(BaseModel):
    """Successful refund outcome."""

    model_config = ConfigDict(strict=True)

    success: Literal[True] = True
    payment_id: str
    refund_id: str


CheckoutResult = CheckoutUrl | ActionError
RefundActionResult = RefundSucceeded | ActionError


class AdminPaymentRow(BaseModel):
    """Payment joined with the payer's name and email for the admin list."""

    model_config = ConfigDict(strict=True)

    payment: Payment
    payer_name: str | None = None
    payer_email: str | None = None


class AdminPaymentDetail(AdminPaymentRow):
    """One payment with what it paid for: entries for entry fees, fee lines for fees."""

    show_entries: list[ShowEntry] = Field(default_factory=list)
    fee_purchases: list[FeePurchase] = Field(default_factory=list)


class PaymentSummary(BaseModel):
    """Aggregate figures for the admin payments dashboard."""

    model_config = ConfigDict(strict=True)

    total_count: int = 0
    total_revenue_cents: int = Field(
        default=0, description="Sum of succeeded payments only"
    )
    count_by_type: dict[str, int] = Field(default_factory=dict)
    count_by_status: dict[str, int] = Field(default_factory=dict)
