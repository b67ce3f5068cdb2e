"""Administrator refunds of completed payments."""

import logging
from typing import TYPE_CHECKING

from portal_shared.models import (
    ActionError,
    ErrorCode,
    Identity,
    PaymentStatus,
    RefundActionResult,
    RefundSucceeded,
    sanitize_store_error,
)
from portal_shared.utils.dates import utc_now
from portal_shared.utils.logging import log_payment_operation

from .stripe_service import StripeService, StripeServiceError

if TYPE_CHECKING:
    from .record_store import ServiceStore

logger = logging.getLogger(__name__)


class RefundService:
    """Issues full Stripe refunds and records them on the payment."""

    def __init__(self, stripe_service: StripeService, store: "ServiceStore") -> None:
        self._stripe = stripe_service
        self._store = store

    def process_refund(
        self,
        identity: Identity | None,
        payment_id: str | None,
        reason: str | None = None,
    ) -> RefundActionResult:
        """Refund a succeeded payment in full.

        Only succeeded payments with a known payment intent are
        sent to Stripe; every other state returns an ActionError without a
        gateway call.
        """
        if identity is None or not identity.is_admin:
            return ActionError.from_code(ErrorCode.FORBIDDEN)

        payment_id = (payment_id or "").strip()
        if not payment_id:
            return ActionError.from_code(ErrorCode.SELECTION_REQUIRED)

        try:
            payment = self._store.get_payment(payment_id)
        except Exception as e:
            logger.error("Failed to load payment %s: %s", payment_id, e)
            return ActionError.from_code(sanitize_store_error(e))

        if payment is None:
            return ActionError.from_code(ErrorCode.PAYMENT_NOT_FOUND)
        if payment.status == PaymentStatus.REFUNDED:
            return ActionError.from_code(ErrorCode.ALREADY_REFUNDED)
        if payment.status != PaymentStatus.SUCCEEDED:
            return ActionError.from_code(ErrorCode.PAYMENT_NOT_COMPLETED)
        if not payment.stripe_payment_intent_id:
            return ActionError.from_code(ErrorCode.PAYMENT_INTENT_MISSING)

        try:
            refund = self._stripe.create_refund(
                payment_intent_id=payment.stripe_payment_intent_id,
                reason=reason or f"Admin refund by {identity.member_id}",
            )
        except StripeServiceError as e:
            log_payment_operation(
                logger,
                "create_refund",
                payment_id=payment.payment_id,
                member_id=payment.member_id,
                error=str(e),
                stripe_error_code=e.stripe_error_code,
            )
            return ActionError.from_code(ErrorCode.REFUND_FAILED)

        try:
            updated = self._store.mark_payment_refunded(
                payment.payment_id, refund.refund_id, utc_now()
            )
        except Exception as e:
            logger.error(
                "Refund %s issued but payment %s not updated: %s",
                refund.refund_id,
                payment.payment_id,
                e,
            )
            return ActionError.from_code(sanitize_store_error(e))

        if updated is None:
            logger.warning(
                "Payment %s changed state before refund %s was recorded",
                payment.payment_id,
                refund.refund_id,
            )

        log_payment_operation(
            logger,
            "refund_payment",
            payment_id=payment.payment_id,
            member_id=payment.member_id,
            amount_cents=refund.amount_cents,
            status=PaymentStatus.REFUNDED.value,
            refund_id=refund.refund_id,
        )
        return RefundSucceeded(payment_id=payment.payment_id, refund_id=refund.refund_id)
