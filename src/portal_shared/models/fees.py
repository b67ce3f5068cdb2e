"""Additional fee types and the purchases made against them."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import FeePurchaseStatus


class FeeType(BaseModel):
    """A priced extra sold outside membership and entries (stall, shavings, RV hookup)."""

    model_config = ConfigDict(strict=True)

    fee_type_id: str
    name: str = Field(..., examples=["Stall (per night)"])
    description: str | None = None
    price_cents: int = Field(..., ge=0, description="Unit price in USD cents")
    category: str = Field(default="general", examples=["stalls"])
    show_id: str | None = Field(default=None, description="Set when sold for one show only")
    max_quantity_per_order: int | None = Field(
        default=None, gt=0, description="Null means no per-order limit"
    )
    is_active: bool = True
    sort_order: int = 0


class FeeSelection(BaseModel):
    """One line of a fee checkout request."""

    fee_type_id: str = Field(default="", examples=["FEE-STALL"])
    quantity: int = Field(default=1, examples=[2])


class FeePurchase(BaseModel):
    """A fee line bought in one checkout, confirmed when the payment succeeds."""

    model_config = ConfigDict(strict=True)

    purchase_id: str
    payment_id: str
    fee_type_id: str
    quantity: int = Field(..., gt=0)
    unit_price_cents: int = Field(..., ge=0)
    total_cents: int = Field(..., ge=0)
    show_id: str | None = None
    purchaser_name: str
    purchaser_email: str
    status: FeePurchaseStatus = FeePurchaseStatus.PENDING
    created_at: datetime
    updated_at: datetime
