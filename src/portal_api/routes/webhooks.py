"""Webhook endpoints for Stripe payment events.

Handles:
- checkout.session.completed: marks the payment succeeded and fulfills it
- payment_intent.succeeded: records the payment intent on the payment
- payment_intent.payment_failed: marks the pending payment failed

These endpoints do NOT require JWT authentication as they receive
signed payloads from Stripe.
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from portal_shared.models import ErrorCode, PortalError, ProcessingResult
from portal_shared.services.stripe_service import (
    StripeService,
    StripeServiceError,
    WebhookSecretMissingError,
)
from portal_shared.services.webhook_handler import WebhookHandler
from portal_shared.utils.logging import get_logger

from portal_api.dependencies import get_stripe, get_webhook_handler

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

SIGNATURE_HEADER = "Stripe-Signature"


class WebhookResponse(BaseModel):
    """Standard webhook response."""

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: ProcessingResult
    message: str | None = None


WEBHOOK_DESCRIPTION = """
Endpoint for Stripe webhook events.

**No authentication required** - signature is verified using the Stripe
webhook secret against the raw request body.

Once the signature is verified the response is always 200, including when
handling the event fails; the failure is logged and recorded in the audit
table. Duplicate events (same event id) return 200 with a `duplicate` result.
"""


async def _receive(
    request: Request,
    stripe_service: StripeService,
    handler: WebhookHandler,
) -> WebhookResponse:
    if not stripe_service.has_webhook_secret():
        logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
        raise PortalError(ErrorCode.WEBHOOK_NOT_CONFIGURED)

    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("Webhook request missing Stripe-Signature header")
        raise PortalError(
            ErrorCode.INVALID_WEBHOOK_SIGNATURE,
            details={"message": "Missing Stripe-Signature header"},
        )

    payload = await request.body()

    try:
        event = stripe_service.verify_webhook_signature(payload, signature)
    except WebhookSecretMissingError:
        raise PortalError(ErrorCode.WEBHOOK_NOT_CONFIGURED)
    except StripeServiceError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise PortalError(ErrorCode.INVALID_WEBHOOK_SIGNATURE)

    outcome = handler.handle(event, StripeService.compute_payload_hash(payload))
    return WebhookResponse(
        received=True,
        event_id=outcome.event_id,
        event_type=outcome.event_type,
        processing_result=outcome.processing_result,
        message=outcome.message,
    )


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description=WEBHOOK_DESCRIPTION,
    response_model=WebhookResponse,
    responses={
        400: {"description": "Invalid signature or missing header"},
        500: {"description": "Webhook secret not configured"},
    },
)
async def handle_stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    return await _receive(request, stripe_service, handler)


@router.post(
    "/webhooks/payment",
    summary="Receive payment gateway webhook events",
    description=WEBHOOK_DESCRIPTION,
    response_model=WebhookResponse,
    include_in_schema=False,
)
async def handle_payment_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    return await _receive(request, stripe_service, handler)
