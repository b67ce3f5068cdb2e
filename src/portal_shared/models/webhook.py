"""Stripe webhook event model for idempotency and auditing."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import ProcessingResult


class WebhookEvent(BaseModel):
    """Log of a received Stripe webhook event.

    Used for:
    - Idempotency: short-circuit replays of an already handled event
    - Auditing: track all verified deliveries
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(
        ...,
        description="Stripe event ID (evt_xxx)",
        examples=["evt_1ABC123DEF456"],
    )
    event_type: str = Field(
        ...,
        description="Stripe event type",
        examples=["checkout.session.completed", "payment_intent.payment_failed"],
    )
    processed_at: datetime
    payload_hash: str = Field(..., description="SHA-256 hash of the raw body")
    checkout_session_id: str | None = None
    payment_id: str | None = None
    processing_result: ProcessingResult = ProcessingResult.SUCCESS
    error_message: str | None = None
