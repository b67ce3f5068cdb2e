"""Administrator payment endpoints: listing, summary, detail and refunds.

All endpoints require an identity with the admin role.
"""

from fastapi import APIRouter, Body, Depends

from portal_api.dependencies import (
    get_payment_query_service,
    get_refund_service,
    require_admin,
)
from portal_api.models.checkout import RefundRequest
from portal_shared.models import (
    ActionError,
    AdminPaymentDetail,
    AdminPaymentRow,
    ErrorCode,
    Identity,
    PaymentSummary,
    PortalError,
    RefundSucceeded,
)
from portal_shared.services.payment_queries import PaymentQueryService
from portal_shared.services.refunds import RefundService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/payments",
    summary="List all payments",
    response_model=list[AdminPaymentRow],
)
def list_payments(
    _: Identity = Depends(require_admin),
    queries: PaymentQueryService = Depends(get_payment_query_service),
) -> list[AdminPaymentRow]:
    """All payments, newest first, with payer name and email."""
    return queries.admin_payments()


@router.get(
    "/payments/summary",
    summary="Payment totals",
    response_model=PaymentSummary,
)
def payment_summary(
    _: Identity = Depends(require_admin),
    queries: PaymentQueryService = Depends(get_payment_query_service),
) -> PaymentSummary:
    return queries.summary()


@router.get(
    "/payments/{payment_id}",
    summary="Payment detail",
    response_model=AdminPaymentDetail,
    responses={
        403: {"description": "Not an administrator", "model": ActionError},
        404: {"description": "Payment not found", "model": ActionError},
    },
)
def get_payment(
    payment_id: str,
    _: Identity = Depends(require_admin),
    queries: PaymentQueryService = Depends(get_payment_query_service),
) -> AdminPaymentDetail:
    """The payment, its payer, and the show entries or fee lines it paid for."""
    detail = queries.admin_payment_detail(payment_id.strip())
    if detail is None:
        raise PortalError(ErrorCode.PAYMENT_NOT_FOUND)
    return detail


@router.post(
    "/payments/{payment_id}/refund",
    summary="Refund a payment in full",
    response_model=RefundSucceeded,
    responses={
        403: {"description": "Not an administrator", "model": ActionError},
        404: {"description": "Payment not found", "model": ActionError},
        409: {"description": "Payment pending or already refunded", "model": ActionError},
        502: {"description": "Stripe refund failed", "model": ActionError},
    },
)
def refund_payment(
    payment_id: str,
    body: RefundRequest | None = Body(default=None),
    identity: Identity = Depends(require_admin),
    refunds: RefundService = Depends(get_refund_service),
) -> RefundSucceeded:
    result = refunds.process_refund(
        identity, payment_id, reason=body.reason if body else None
    )
    if isinstance(result, ActionError):
        raise PortalError.from_action_error(result)
    return result
