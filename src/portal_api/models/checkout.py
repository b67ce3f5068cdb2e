"""Request and response models for checkout, payment and refund endpoints."""

from pydantic import BaseModel, Field

from portal_shared.models import FeeSelection


class MembershipCheckoutRequest(BaseModel):
    """Start checkout for a membership type."""

    membership_type_slug: str | None = Field(
        default=None,
        description="Slug of the membership type to purchase",
        examples=["adult-annual"],
    )


class EntryCheckoutRequest(BaseModel):
    """Start checkout for one or more show entries of the same show."""

    entry_ids: list[str] = Field(
        default_factory=list,
        description="IDs of the caller's unpaid entries",
        examples=[["ENT-001", "ENT-002"]],
    )


class FeeCheckoutRequest(BaseModel):
    """Start checkout for additional fee items."""

    items: list[FeeSelection] = Field(
        default_factory=list,
        description="Fee types and quantities; each fee type at most once",
    )
    show_id: str | None = Field(
        default=None,
        description="Show the fees are for, if any",
        examples=["SHOW-1"],
    )


class RefundRequest(BaseModel):
    """Optional body for an admin refund."""

    reason: str | None = Field(default=None, max_length=500)
