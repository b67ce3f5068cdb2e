"""Member, membership type and show entry models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .enums import EntryStatus, MembershipStatus


class Member(BaseModel):
    """A registered member, keyed by the authentication identity's subject."""

    model_config = ConfigDict(strict=True)

    member_id: str = Field(..., description="Identity subject (one row per identity)")
    email: EmailStr = Field(..., description="Contact email, also sent to Stripe")
    first_name: str
    last_name: str
    phone: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    membership_type: str | None = Field(
        default=None, description="Slug of the current membership type"
    )
    membership_status: MembershipStatus = MembershipStatus.PENDING
    membership_start: datetime | None = None
    membership_expiry: datetime | None = Field(
        default=None, description="Null while pending or for lifetime memberships"
    )
    stripe_customer_id: str | None = Field(
        default=None,
        description="Stripe Customer ID (cus_xxx), set once and reused",
        examples=["cus_PQ12rs34TU"],
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class MembershipType(BaseModel):
    """A purchasable membership tier.

    A price of 0 cents means the tier needs no payment. A null
    duration_months means a lifetime membership.
    """

    model_config = ConfigDict(strict=True)

    membership_type_id: str
    name: str = Field(..., examples=["Adult Annual"])
    slug: str = Field(..., examples=["adult-annual"])
    description: str | None = None
    price_cents: int = Field(..., ge=0, description="Price in USD cents")
    duration_months: int | None = Field(default=None, gt=0)
    benefits: list[str] = Field(default_factory=list)
    sort_order: int = 0
    is_active: bool = True


class ShowEntry(BaseModel):
    """One horse/rider entry into a show, paid for through entry-fee checkout."""

    model_config = ConfigDict(strict=True)

    entry_id: str
    show_id: str
    member_id: str
    horse_name: str
    rider_name: str
    status: EntryStatus = EntryStatus.DRAFT
    total_cents: int = Field(default=0, ge=0, description="Entry fees in USD cents")
    payment_id: str | None = None

    @property
    def line_item_name(self) -> str:
        return f"{self.horse_name} / {self.rider_name}"


class Show(BaseModel):
    """A show; only the fields read by entry checkout."""

    model_config = ConfigDict(strict=True)

    show_id: str
    name: str
