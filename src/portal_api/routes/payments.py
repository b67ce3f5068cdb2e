"""Member payment history endpoints (JWT required)."""

from fastapi import APIRouter, Depends

from portal_api.dependencies import get_payment_query_service, require_identity
from portal_shared.models import ErrorCode, Identity, Payment, PortalError
from portal_shared.services.payment_queries import PaymentQueryService

router = APIRouter(tags=["payments"])


@router.get(
    "/payments/me",
    summary="List my payments",
    response_model=list[Payment],
)
def list_my_payments(
    identity: Identity = Depends(require_identity),
    queries: PaymentQueryService = Depends(get_payment_query_service),
) -> list[Payment]:
    """The caller's payments, newest first."""
    return queries.member_payments(identity)


@router.get(
    "/payments/session/{session_id}",
    summary="Get my payment for a checkout session",
    description="""
Used by the checkout success page. The payment may still be `pending` if the
webhook has not arrived yet.
""",
    response_model=Payment,
    responses={404: {"description": "No payment of yours for this session"}},
)
def get_payment_for_session(
    session_id: str,
    identity: Identity = Depends(require_identity),
    queries: PaymentQueryService = Depends(get_payment_query_service),
) -> Payment:
    payment = queries.member_payment_for_session(identity, session_id)
    if payment is None:
        raise PortalError(ErrorCode.PAYMENT_NOT_FOUND)
    return payment
